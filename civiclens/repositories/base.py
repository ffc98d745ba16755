"""
Base repository shared by the candidate, manifesto, election, fact-check,
results-link and sync-run repositories.

Every write the sync layer makes goes through a repository and reports an
``UpsertResult`` so adapters can count outcomes uniformly. Repositories never
commit; adapters commit one record at a time.

Example:
    class ElectionRepository(BaseRepository[Election]):
        def find_by_name(self, name: str) -> Optional[Election]:
            return self.where_first(Election.name == name)
"""
import enum
import uuid
from abc import ABC
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import desc, func
from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class UpsertResult(str, enum.Enum):
    """Outcome of a single upsert."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    ERROR = "error"


def new_id() -> str:
    return str(uuid.uuid4())


class BaseRepository(Generic[T], ABC):
    """
    Common lookups and change-tracking writes for one model type.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The sync session shared with the adapters
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # Lookups
    # ========================================================================

    def find_by_id(self, id: str) -> Optional[T]:
        return self.db.query(self.model_type).filter(self.model_type.id == id).first()

    def find_all(self) -> List[T]:
        return self.db.query(self.model_type).all()

    def query(self) -> Query:
        return self.db.query(self.model_type)

    def where(self, *criterion) -> List[T]:
        return self.db.query(self.model_type).filter(*criterion).all()

    def where_first(self, *criterion) -> Optional[T]:
        return self.db.query(self.model_type).filter(*criterion).first()

    def count(self, *criterion) -> int:
        query = self.db.query(func.count(self.model_type.id))
        if criterion:
            query = query.filter(*criterion)
        return query.scalar() or 0

    def count_by(self, group_field: str) -> List[Tuple[Any, int]]:
        """``[(value, count), ...]`` for ``group_field``, largest group first."""
        column = getattr(self.model_type, group_field)
        total = func.count(self.model_type.id)
        return self.db.query(column, total).group_by(column).order_by(desc(total)).all()

    # ========================================================================
    # Writes
    # ========================================================================

    def create(self, **kwargs) -> T:
        """Add a new row with a generated id. The caller commits."""
        kwargs.setdefault('id', new_id())
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def apply_changes(self, instance: T, fields: Dict[str, Any]) -> bool:
        """
        Copy ``fields`` onto ``instance``, touching only values that differ.

        Returns:
            True if at least one column changed
        """
        changed = False
        for key, value in fields.items():
            if not hasattr(instance, key):
                continue
            if getattr(instance, key) != value:
                setattr(instance, key, value)
                changed = True
        if changed and hasattr(instance, 'updated_at'):
            instance.updated_at = datetime.utcnow()
        return changed

    def create_or_update(self, existing: Optional[T], fields: Dict[str, Any]) -> Tuple[T, UpsertResult]:
        """
        Create a timestamped row from ``fields``, or apply them to ``existing``.

        Returns:
            (row, CREATED | UPDATED | UNCHANGED)
        """
        if existing is None:
            now = datetime.utcnow()
            return self.create(created_at=now, updated_at=now, **fields), UpsertResult.CREATED
        if self.apply_changes(existing, fields):
            return existing, UpsertResult.UPDATED
        return existing, UpsertResult.UNCHANGED
