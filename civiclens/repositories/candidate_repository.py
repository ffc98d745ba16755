"""
Candidate Repository for canonical candidate data access.

Usage:
    repo = CandidateRepository(db)
    candidate = repo.find_by_external_id("INEC_OFFICIAL", "INEC_001")
    matches = repo.find_by_match_key("BOLA AHMED TINUBU", "APC", "President")
"""
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import or_

from civiclens.models import Candidate, CandidateExternalId, VerificationStatus
from civiclens.repositories.base import BaseRepository, new_id


class CandidateRepository(BaseRepository[Candidate]):
    """Repository for canonical candidates and their external ids."""

    def __init__(self, db):
        """Initialize the candidate repository."""
        super().__init__(Candidate, db)

    # ========================================================================
    # Identity Lookups
    # ========================================================================

    def find_by_external_id(self, provider: str, external_id: str) -> Optional[Candidate]:
        """Find a candidate by a provider-assigned id."""
        link = self.db.query(CandidateExternalId).filter(
            CandidateExternalId.provider == provider,
            CandidateExternalId.external_id == external_id
        ).first()
        return link.candidate if link else None

    def find_by_match_key(
        self,
        normalized_name: str,
        party_code: str,
        office: str,
        constituency: Optional[str] = None,
        election_date: Optional[date] = None
    ) -> List[Candidate]:
        """
        Find candidates by the (name, party, office, constituency, election_date) tuple.

        A missing constituency or election date on either side matches
        anything, so one person standing in two election cycles stays two
        candidates. Results are ordered best-first: verified rows, then an
        exact constituency match, then an exact election date, then the
        oldest row.
        """
        query = self.query().filter(
            Candidate.normalized_name == normalized_name,
            Candidate.party_code == party_code,
            Candidate.office == office
        )
        if constituency:
            query = query.filter(or_(
                Candidate.constituency == constituency,
                Candidate.constituency.is_(None)
            ))
        if election_date:
            query = query.filter(or_(
                Candidate.election_date == election_date,
                Candidate.election_date.is_(None)
            ))

        return sorted(
            query.all(),
            key=lambda c: (
                c.pending_verification,
                bool(constituency) and c.constituency != constituency,
                bool(election_date) and c.election_date != election_date,
                c.created_at,
            )
        )

    def find_by_party_and_office(self, party_code: str, office: str) -> List[Candidate]:
        return self.where(Candidate.party_code == party_code, Candidate.office == office)

    def find_by_name_and_party(self, normalized_name: str, party_code: str) -> List[Candidate]:
        return self.db.query(Candidate).filter(
            Candidate.normalized_name == normalized_name,
            Candidate.party_code == party_code
        ).order_by(Candidate.created_at).all()

    def find_with_provider(self, provider: str) -> List[Candidate]:
        """Candidates carrying at least one external id from ``provider``."""
        return self.db.query(Candidate).join(CandidateExternalId).filter(
            CandidateExternalId.provider == provider
        ).order_by(Candidate.created_at).all()

    def find_by_verification(self, status: VerificationStatus) -> List[Candidate]:
        return self.where(Candidate.verification_status == status.value)

    def find_missing_required_fields(self) -> List[Candidate]:
        """Candidates without a party code or office."""
        return self.db.query(Candidate).filter(or_(
            Candidate.party_code.is_(None),
            Candidate.party_code == '',
            Candidate.office.is_(None),
            Candidate.office == ''
        )).all()

    # ========================================================================
    # Writes
    # ========================================================================

    def create_candidate(self, fields: Dict, verified: bool = False) -> Candidate:
        now = datetime.utcnow()
        status = VerificationStatus.VERIFIED if verified else VerificationStatus.UNVERIFIED
        return self.create(
            verification_status=status.value,
            created_at=now,
            updated_at=now,
            **fields
        )

    def attach_external_id(self, candidate: Candidate, provider: str, external_id: str) -> bool:
        """
        Record ``external_id`` for ``candidate`` if it is not already known.

        Returns:
            True if a new link was added
        """
        if not external_id or candidate.external_ids.get(provider) == external_id:
            return False
        candidate.external_id_links.append(CandidateExternalId(
            id=new_id(),
            provider=provider,
            external_id=external_id,
            created_at=datetime.utcnow()
        ))
        return True

    # ========================================================================
    # Aggregates
    # ========================================================================

    def count_by_office_and_party(self) -> Dict[str, Dict[str, int]]:
        """Nested counts: ``{office: {party_code: count}}``."""
        rows = self.db.query(Candidate.office, Candidate.party_code).all()
        coverage: Dict[str, Dict[str, int]] = {}
        for office, party_code in rows:
            parties = coverage.setdefault(office or 'UNKNOWN', {})
            key = party_code or 'UNKNOWN'
            parties[key] = parties.get(key, 0) + 1
        return coverage
