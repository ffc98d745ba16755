"""
Repository layer for data access.

Usage:
    from civiclens.repositories import CandidateRepository
    from civiclens.core.database import SessionLocal

    db = SessionLocal()
    candidate_repo = CandidateRepository(db)
    candidate = candidate_repo.find_by_external_id("INEC_OFFICIAL", "INEC_001")
    db.close()
"""

from civiclens.repositories.base import BaseRepository, UpsertResult
from civiclens.repositories.candidate_repository import CandidateRepository
from civiclens.repositories.manifesto_repository import ManifestoRepository
from civiclens.repositories.fact_check_repository import FactCheckRepository
from civiclens.repositories.election_repository import ElectionRepository
from civiclens.repositories.results_link_repository import ResultsLinkRepository
from civiclens.repositories.sync_run_repository import SyncRunRepository

__all__ = [
    "BaseRepository",
    "UpsertResult",
    "CandidateRepository",
    "ManifestoRepository",
    "FactCheckRepository",
    "ElectionRepository",
    "ResultsLinkRepository",
    "SyncRunRepository",
]
