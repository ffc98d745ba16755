"""
SyncRun Repository for the orchestrator's audit trail.

Usage:
    repo = SyncRunRepository(db)
    run = repo.start_run("ALL", "full")
    recent = repo.find_recent(limit=20)
"""
from typing import Dict, List, Optional

from civiclens.models import SyncRun, SyncRunStatus
from civiclens.repositories.base import BaseRepository


class SyncRunRepository(BaseRepository[SyncRun]):
    """Repository for SyncRun audit records."""

    def __init__(self, db):
        """Initialize the sync run repository."""
        super().__init__(SyncRun, db)

    def start_run(self, provider: str, sync_type: str) -> SyncRun:
        """Create a pending SyncRun. The caller commits."""
        return self.create(
            provider=provider,
            sync_type=sync_type,
            status=SyncRunStatus.PENDING.value,
            records_created=0,
            records_updated=0,
            records_failed=0
        )

    def find_recent(self, limit: int = 20) -> List[SyncRun]:
        return self.db.query(SyncRun).order_by(
            SyncRun.started_at.desc()
        ).limit(limit).all()

    def find_last_completed(self) -> Optional[SyncRun]:
        return self.db.query(SyncRun).filter(
            SyncRun.status == SyncRunStatus.COMPLETED.value
        ).order_by(SyncRun.completed_at.desc()).first()

    def count_by_status(self) -> Dict[str, int]:
        return {status: count for status, count in self.count_by('status')}
