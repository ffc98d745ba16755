"""Candidate resolver for reconciling candidate identities across sources.

Feeds disagree on how they identify a candidate. The official feed has its
own ids, the aggregator and party sites only have names, and fact checks
name a candidate and a party in free text.

Pipeline:
1. Provider external id lookup (authoritative)
2. Match key lookup: (normalized_name, party_code, office, constituency,
   election_date), where a missing constituency or date is a wildcard
3. No match from a non-authoritative source: create an unverified placeholder
4. The authoritative source always wins: overwrite fields, mark verified
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from rapidfuzz import fuzz, process

from civiclens.models import Candidate, VerificationStatus
from civiclens.repositories import CandidateRepository, UpsertResult
from civiclens.services.sync.precedence import Source, is_authoritative
from civiclens.services.sync.utils.name_normalizer import (
    normalize_full_name, normalize_office, normalize_party_code
)
from civiclens.services.sync.utils.validators import parse_date

logger = logging.getLogger(__name__)

DUPLICATE_SCORE_THRESHOLD = 90


class CandidateResolver:
    """
    Resolve raw candidate references to canonical Candidate rows.

    Used by every adapter; the source passed in decides whether a write may
    overwrite existing fields.
    """

    def __init__(self, candidates: CandidateRepository):
        """
        Initialize the candidate resolver.

        Args:
            candidates: Candidate repository bound to the sync session
        """
        self.candidates = candidates

    def resolve(
        self,
        full_name: str,
        party: str,
        office: str,
        constituency: Optional[str] = None,
        source: Optional[Source] = None,
        external_id: Optional[str] = None,
        election_date: Optional[date] = None
    ) -> Optional[Candidate]:
        """
        Look up an existing candidate without writing anything.

        Returns:
            Best matching candidate, or None
        """
        if source is not None and external_id:
            candidate = self.candidates.find_by_external_id(Source(source).value, external_id)
            if candidate:
                logger.debug(f"External id match for {external_id} ({source})")
                return candidate

        matches = self.candidates.find_by_match_key(
            normalize_full_name(full_name),
            normalize_party_code(party),
            normalize_office(office),
            (constituency or '').strip() or None,
            election_date
        )
        return matches[0] if matches else None

    def upsert(self, raw: Any, source: Source) -> Tuple[Candidate, UpsertResult]:
        """
        Apply one raw candidate record from ``source``.

        Args:
            raw: Object with full_name, party, office and optional
                constituency, state, election_date, external_id, avatar_url, bio
            source: Source the record came from

        Returns:
            (candidate, CREATED | UPDATED | UNCHANGED)
        """
        fields = self._candidate_fields(raw, source)
        external_id = getattr(raw, 'external_id', None)
        authoritative = is_authoritative(source)

        candidate = self.resolve(
            raw.full_name, raw.party, raw.office,
            constituency=fields.get('constituency'),
            source=source,
            external_id=external_id,
            election_date=fields.get('election_date')
        )

        if candidate is None:
            candidate = self.candidates.create_candidate(fields, verified=authoritative)
            self.candidates.attach_external_id(candidate, source.value, external_id)
            if not authoritative:
                logger.info(
                    f"Created unverified placeholder for {fields['normalized_name']} "
                    f"({fields['party_code']}, {fields['office']}) from {source.value}"
                )
            return candidate, UpsertResult.CREATED

        changed = self.candidates.attach_external_id(candidate, source.value, external_id)

        if authoritative:
            changed = self.candidates.apply_changes(candidate, fields) or changed
            if candidate.pending_verification:
                candidate.mark_verified()
                changed = True
                logger.info(f"Verified candidate {candidate.id} ({candidate.normalized_name})")

        return candidate, UpsertResult.UPDATED if changed else UpsertResult.UNCHANGED

    def resolve_by_party_and_office(self, party: str, office: str) -> Optional[Candidate]:
        """
        Resolve a nameless reference (e.g. a party's presidential manifesto).

        Succeeds only when a single person holds the (party, office) slot.
        """
        matches = self.candidates.find_by_party_and_office(
            normalize_party_code(party), normalize_office(office)
        )
        if len({candidate.normalized_name for candidate in matches}) != 1:
            return None
        return self._best(matches)

    def resolve_by_name_and_party(self, full_name: str, party: str) -> Optional[Candidate]:
        """Read-only lookup used to link annotations such as fact checks."""
        if not full_name or not party:
            return None
        matches = self.candidates.find_by_name_and_party(
            normalize_full_name(full_name), normalize_party_code(party)
        )
        return self._best(matches)

    def find_possible_duplicates(self, threshold: int = DUPLICATE_SCORE_THRESHOLD) -> List[Dict[str, Any]]:
        """
        Pair unverified placeholders with similar verified candidates.

        Uses RapidFuzz WRatio on normalized names within the same
        (party_code, office). Report only; nothing is merged.
        """
        verified_by_slot: Dict[Tuple[str, str], List[Candidate]] = {}
        for candidate in self.candidates.find_by_verification(VerificationStatus.VERIFIED):
            verified_by_slot.setdefault((candidate.party_code, candidate.office), []).append(candidate)

        duplicates = []
        for placeholder in self.candidates.find_by_verification(VerificationStatus.UNVERIFIED):
            pool = verified_by_slot.get((placeholder.party_code, placeholder.office))
            if not pool:
                continue

            names = [candidate.normalized_name for candidate in pool]
            for _, score, index in process.extract(
                placeholder.normalized_name,
                names,
                scorer=fuzz.WRatio,
                score_cutoff=threshold,
                limit=None
            ):
                match = pool[index]
                duplicates.append({
                    'placeholder_id': placeholder.id,
                    'placeholder_name': placeholder.name,
                    'candidate_id': match.id,
                    'candidate_name': match.name,
                    'party_code': placeholder.party_code,
                    'office': placeholder.office,
                    'score': round(float(score), 1),
                })

        return duplicates

    @staticmethod
    def _best(matches: List[Candidate]) -> Optional[Candidate]:
        if not matches:
            return None
        return sorted(matches, key=lambda c: (c.pending_verification, c.created_at))[0]

    @staticmethod
    def _candidate_fields(raw: Any, source: Source) -> Dict[str, Any]:
        fields = {
            'name': ' '.join(raw.full_name.split()),
            'normalized_name': normalize_full_name(raw.full_name),
            'party': ' '.join(raw.party.split()),
            'party_code': normalize_party_code(raw.party),
            'office': normalize_office(raw.office),
            'constituency': (getattr(raw, 'constituency', None) or '').strip() or None,
            'state': (getattr(raw, 'state', None) or '').strip() or None,
            'election_date': parse_date(getattr(raw, 'election_date', None)),
            'avatar_url': getattr(raw, 'avatar_url', None),
            'bio': getattr(raw, 'bio', None),
            'bio_source': Source(source).value,
        }
        # Never blank out a column because a feed omitted it
        return {
            key: value for key, value in fields.items()
            if value is not None or key in ('name', 'normalized_name')
        }
