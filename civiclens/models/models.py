"""
Database models for the CivicLens election data sync layer.

Candidates are the canonical, deduplicated records; every other table either
hangs off a candidate (manifestos, fact checks, external ids) or records the
sync layer's own audit trail (sync runs).
"""
import enum
import json
from datetime import datetime
from sqlalchemy import (
    Column, String, Float, Integer, DateTime, Date, ForeignKey, Text, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base

from civiclens.services.sync.errors import InvalidSyncTransition

Base = declarative_base()


class VerificationStatus(str, enum.Enum):
    """Candidate verification lifecycle: unverified -> verified."""
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


class SyncRunStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Candidate(Base):
    """Canonical candidate reconciled across all sources.

    Identity is the official external id when one is known, else the
    (normalized_name, party_code, office, constituency, election_date) tuple.
    Rows are never deleted; placeholders created by non-official sources
    stay ``unverified`` until the official feed confirms them.
    """
    __tablename__ = "candidates"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    normalized_name = Column(String(255), nullable=False, index=True)
    party = Column(String(255), nullable=True)
    party_code = Column(String(16), nullable=True, index=True)
    office = Column(String(128), nullable=True, index=True)
    constituency = Column(String(255), nullable=True)
    state = Column(String(64), nullable=True)
    election_date = Column(Date, nullable=True)
    avatar_url = Column(String(512), nullable=True)
    bio = Column(Text, nullable=True)
    bio_source = Column(String(32), nullable=True, index=True)  # Source that last wrote core fields
    verification_status = Column(
        String(16), nullable=False, default=VerificationStatus.UNVERIFIED.value, index=True
    )
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    external_id_links = relationship(
        "CandidateExternalId", back_populates="candidate", cascade="all, delete-orphan"
    )
    manifestos = relationship("Manifesto", back_populates="candidate")

    __table_args__ = (
        Index(
            'ix_candidates_match_key', 'normalized_name', 'party_code', 'office', 'constituency', 'election_date'
        ),
    )

    @property
    def pending_verification(self) -> bool:
        return self.verification_status != VerificationStatus.VERIFIED.value

    @property
    def external_ids(self) -> dict:
        """Per-provider external id map, e.g. {'INEC_OFFICIAL': 'INEC_001'}."""
        return {link.provider: link.external_id for link in self.external_id_links}

    def mark_verified(self) -> None:
        self.verification_status = VerificationStatus.VERIFIED.value

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'normalized_name': self.normalized_name,
            'party': self.party,
            'party_code': self.party_code,
            'office': self.office,
            'constituency': self.constituency,
            'state': self.state,
            'election_date': self.election_date.isoformat() if self.election_date else None,
            'bio_source': self.bio_source,
            'verification_status': self.verification_status,
            'pending_verification': self.pending_verification,
            'external_ids': self.external_ids,
        }


class CandidateExternalId(Base):
    """One provider-assigned identifier for a candidate."""
    __tablename__ = "candidate_external_ids"

    id = Column(String(36), primary_key=True)
    candidate_id = Column(String(36), ForeignKey("candidates.id"), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    external_id = Column(String(128), nullable=False)
    created_at = Column(DateTime, nullable=False)

    candidate = relationship("Candidate", back_populates="external_id_links")

    __table_args__ = (
        UniqueConstraint('provider', 'external_id', name='uq_candidate_external_id'),
    )


class Manifesto(Base):
    """One append-only manifesto version.

    ``checksum`` is the full SHA-256 of ``raw_text``; a (candidate, checksum)
    pair is stored at most once. ``candidate_id`` is NULL for orphans.
    """
    __tablename__ = "manifestos"

    id = Column(String(36), primary_key=True)
    candidate_id = Column(String(36), ForeignKey("candidates.id"), nullable=True, index=True)
    party_code = Column(String(16), nullable=True, index=True)
    office = Column(String(128), nullable=True)
    source = Column(String(32), nullable=False, index=True)
    source_url = Column(String(512), nullable=True)
    version_label = Column(String(128), nullable=True)
    raw_text = Column(Text, nullable=False)
    sections = Column(Text, nullable=True)  # JSON list of topic sections
    checksum = Column(String(64), nullable=False, index=True)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)

    candidate = relationship("Candidate", back_populates="manifestos")

    __table_args__ = (
        UniqueConstraint('candidate_id', 'checksum', name='uq_manifesto_candidate_checksum'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'candidate_id': self.candidate_id,
            'party_code': self.party_code,
            'office': self.office,
            'source': self.source,
            'source_url': self.source_url,
            'version_label': self.version_label,
            'checksum': self.checksum,
            'published_at': self.published_at.isoformat() if self.published_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class FactCheck(Base):
    """Fact-check annotation. Links to a candidate but never changes one."""
    __tablename__ = "fact_checks"

    id = Column(String(36), primary_key=True)
    headline = Column(String(512), nullable=True)
    claim = Column(Text, nullable=False)
    verdict = Column(String(32), nullable=False, index=True)
    candidate_id = Column(String(36), ForeignKey("candidates.id"), nullable=True, index=True)
    source = Column(String(32), nullable=False)
    source_url = Column(String(512), nullable=False, unique=True)
    trust_score = Column(Float, nullable=False)
    subjects = Column(Text, nullable=True)  # JSON
    explanation = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Election(Base):
    """Election timetable entry from the official feed."""
    __tablename__ = "elections"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    scope = Column(String(32), nullable=False, default='general')
    state_code = Column(String(16), nullable=True)
    date_start = Column(Date, nullable=True)
    date_end = Column(Date, nullable=True)
    status = Column(String(16), nullable=False, default='upcoming')
    source_url = Column(String(512), nullable=False)
    source_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    deadlines = relationship("Deadline", back_populates="election", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('name', 'date_start', name='uq_election_name_date'),
    )


class Deadline(Base):
    """Timetable deadline (e.g. voter registration close) for an election."""
    __tablename__ = "deadlines"

    id = Column(String(36), primary_key=True)
    election_id = Column(String(36), ForeignKey("elections.id"), nullable=False, index=True)
    kind = Column(String(64), nullable=False)
    due_at = Column(DateTime, nullable=False)
    source_url = Column(String(512), nullable=True)

    election = relationship("Election", back_populates="deadlines")

    __table_args__ = (
        UniqueConstraint('election_id', 'kind', name='uq_deadline_election_kind'),
    )


class ResultsLink(Base):
    """Official results portal link, queued as pending until results are ingested."""
    __tablename__ = "results_links"

    id = Column(String(36), primary_key=True)
    url = Column(String(512), nullable=False, unique=True)
    host = Column(String(255), nullable=False)
    source = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default='pending', index=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class SyncRun(Base):
    """Audit record for one top-level orchestrator invocation.

    Status moves pending -> running -> completed|failed, once. Per-source
    errors live in ``error_message``/``run_metadata`` and do not fail a run.
    """
    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True)
    provider = Column(String(128), nullable=False, index=True)  # Source name, comma list or ALL
    sync_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=SyncRunStatus.PENDING.value, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True, index=True)
    records_created = Column(Integer, nullable=False, default=0)
    records_updated = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    run_metadata = Column(Text, nullable=True)  # JSON stored as Text

    _TRANSITIONS = {
        SyncRunStatus.PENDING.value: {SyncRunStatus.RUNNING.value},
        SyncRunStatus.RUNNING.value: {SyncRunStatus.COMPLETED.value, SyncRunStatus.FAILED.value},
    }

    def _transition(self, new_status: SyncRunStatus) -> None:
        allowed = self._TRANSITIONS.get(self.status, set())
        if new_status.value not in allowed:
            raise InvalidSyncTransition(
                f"SyncRun {self.id}: cannot move from {self.status} to {new_status.value}"
            )
        self.status = new_status.value

    def mark_running(self) -> None:
        self._transition(SyncRunStatus.RUNNING)
        self.started_at = datetime.utcnow()

    def mark_completed(self) -> None:
        self._transition(SyncRunStatus.COMPLETED)
        self.completed_at = datetime.utcnow()

    def mark_failed(self, error: str) -> None:
        self._transition(SyncRunStatus.FAILED)
        self.completed_at = datetime.utcnow()
        self.error_message = error

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'provider': self.provider,
            'sync_type': self.sync_type,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'records_created': self.records_created,
            'records_updated': self.records_updated,
            'records_failed': self.records_failed,
            'error_message': self.error_message,
            'reports': json.loads(self.run_metadata).get('reports', []) if self.run_metadata else [],
        }
