"""
Models Module

Usage:
    from civiclens.models import Candidate, Manifesto, SyncRun
"""
from civiclens.models.models import (
    Base,
    VerificationStatus,
    SyncRunStatus,
    Candidate,
    CandidateExternalId,
    Manifesto,
    FactCheck,
    Election,
    Deadline,
    ResultsLink,
    SyncRun,
)

__all__ = [
    "Base",
    "VerificationStatus",
    "SyncRunStatus",
    "Candidate",
    "CandidateExternalId",
    "Manifesto",
    "FactCheck",
    "Election",
    "Deadline",
    "ResultsLink",
    "SyncRun",
]
