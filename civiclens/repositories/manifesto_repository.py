"""
Manifesto Repository.

Manifesto rows are append-only versions keyed by content checksum. Linked
versions dedupe per candidate; orphans (no candidate) dedupe per
(party_code, office).
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from civiclens.models import Candidate, Manifesto
from civiclens.repositories.base import BaseRepository, UpsertResult


class ManifestoRepository(BaseRepository[Manifesto]):
    """Repository for manifesto versions."""

    def __init__(self, db):
        """Initialize the manifesto repository."""
        super().__init__(Manifesto, db)

    def find_by_checksum(self, candidate_id: str, checksum: str) -> Optional[Manifesto]:
        return self.where_first(
            Manifesto.candidate_id == candidate_id,
            Manifesto.checksum == checksum
        )

    def find_orphan_by_checksum(
        self,
        party_code: Optional[str],
        office: Optional[str],
        checksum: str
    ) -> Optional[Manifesto]:
        return self.where_first(
            Manifesto.candidate_id.is_(None),
            Manifesto.party_code == party_code,
            Manifesto.office == office,
            Manifesto.checksum == checksum
        )

    def add_version(self, fields: Dict) -> Tuple[Manifesto, UpsertResult]:
        """
        Store a manifesto version unless the same checksum already exists.

        Args:
            fields: Column values; must include ``checksum`` and ``candidate_id``
                (None for an orphan)

        Returns:
            (manifesto, CREATED) for a new version, or (existing, UNCHANGED)
        """
        candidate_id = fields.get('candidate_id')
        if candidate_id:
            existing = self.find_by_checksum(candidate_id, fields['checksum'])
        else:
            existing = self.find_orphan_by_checksum(
                fields.get('party_code'), fields.get('office'), fields['checksum']
            )
        if existing:
            return existing, UpsertResult.UNCHANGED

        manifesto = self.create(created_at=datetime.utcnow(), **fields)
        return manifesto, UpsertResult.CREATED

    def find_orphans(self) -> List[Manifesto]:
        """Manifestos whose candidate link is missing or dangling."""
        return self.db.query(Manifesto).outerjoin(
            Candidate, Manifesto.candidate_id == Candidate.id
        ).filter(
            Candidate.id.is_(None)
        ).order_by(Manifesto.created_at).all()
