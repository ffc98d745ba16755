"""Read-only report objects produced by adapters, the orchestrator and the scheduler."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class SyncReport:
    """Outcome of one adapter sync step (e.g. INEC candidates)."""
    source: str
    operation: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    def add_error(self, message: str, count_failure: bool = True) -> None:
        self.errors.append(message)
        if count_failure:
            self.failed += 1

    def record(self, outcome) -> None:
        """Count one upsert outcome (created, updated, unchanged or error)."""
        outcome = getattr(outcome, 'value', outcome)
        if outcome == 'created':
            self.created += 1
        elif outcome == 'updated':
            self.updated += 1
        elif outcome == 'unchanged':
            self.unchanged += 1
        else:
            self.failed += 1

    def finish(self) -> "SyncReport":
        self.duration_ms = int((datetime.utcnow() - self.started_at).total_seconds() * 1000)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'operation': self.operation,
            'created': self.created,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'failed': self.failed,
            'skipped': self.skipped,
            'errors': list(self.errors),
            'success': self.success,
            'started_at': self.started_at.isoformat(),
            'duration_ms': self.duration_ms,
        }


@dataclass
class FieldConflict:
    """One differing field between an official candidate and another row."""
    normalized_name: str
    party_code: str
    field: str
    official_candidate_id: str
    official_source: str
    official_value: Optional[str]
    other_candidate_id: str
    other_source: str
    other_value: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConflictReport:
    conflicts: List[FieldConflict] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def __len__(self) -> int:
        return len(self.conflicts)

    def by_field(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for conflict in self.conflicts:
            counts[conflict.field] = counts.get(conflict.field, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at.isoformat(),
            'total': len(self.conflicts),
            'by_field': self.by_field(),
            'conflicts': [conflict.to_dict() for conflict in self.conflicts],
        }


@dataclass
class SyncStats:
    """Per-provider result of one scheduler tick."""
    provider: str
    last_sync: datetime
    success: bool
    changes: int = 0
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['last_sync'] = self.last_sync.isoformat()
        return data
