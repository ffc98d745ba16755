"""
Election Repository for timetable data from the official feed.

Usage:
    repo = ElectionRepository(db)
    election, result = repo.upsert_election({"name": "Presidential Election", ...})
    repo.upsert_deadline(election, "voter_registration_close", due_at)
"""
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from civiclens.models import Deadline, Election
from civiclens.repositories.base import BaseRepository, UpsertResult, new_id


class ElectionRepository(BaseRepository[Election]):
    """Repository for elections and their deadlines."""

    def __init__(self, db):
        """Initialize the election repository."""
        super().__init__(Election, db)

    def find_by_name_and_date(self, name: str, date_start: Optional[date]) -> Optional[Election]:
        """Find an election by its natural key."""
        return self.where_first(Election.name == name, Election.date_start == date_start)

    def upsert_election(self, fields: Dict) -> Tuple[Election, UpsertResult]:
        """
        Create or update an election keyed by (name, date_start).

        Returns:
            (election, CREATED | UPDATED | UNCHANGED)
        """
        existing = self.find_by_name_and_date(fields['name'], fields.get('date_start'))
        return self.create_or_update(existing, fields)

    def upsert_deadline(
        self,
        election: Election,
        kind: str,
        due_at: datetime,
        source_url: Optional[str] = None
    ) -> UpsertResult:
        """Create or update the deadline of ``kind`` for ``election``."""
        for deadline in election.deadlines:
            if deadline.kind == kind:
                if self.apply_changes(deadline, {'due_at': due_at, 'source_url': source_url}):
                    return UpsertResult.UPDATED
                return UpsertResult.UNCHANGED

        election.deadlines.append(Deadline(
            id=new_id(),
            kind=kind,
            due_at=due_at,
            source_url=source_url
        ))
        return UpsertResult.CREATED
