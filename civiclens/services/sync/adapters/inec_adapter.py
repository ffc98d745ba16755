"""INEC adapter for the official electoral commission feed.

This is the only authoritative source. Its candidate upserts always win on
conflicting fields and move placeholders to ``verified``.

Feed formats (JSON):
- Candidates: ``{"candidates": [...], "races": [{"office", "constituency",
  "state", "date", "candidates": [...]}]}``. Race-level fields are defaults
  for the candidates nested in that race.
- Timetables: ``{"elections": [...], "deadlines": [{"election", "kind",
  "due_at"}]}``
- Results links: configured portal URLs, not fetched. Each is queued as a
  ``pending`` results link for the results ingester.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from civiclens.repositories import ElectionRepository, ResultsLinkRepository, UpsertResult
from civiclens.services.sync.adapters.base_adapter import (
    BaseSourceAdapter, RawCandidate, RawDeadline, RawElection
)
from civiclens.services.sync.errors import TransportError
from civiclens.services.sync.precedence import Source
from civiclens.services.sync.utils.checksum import generate_checksum
from civiclens.services.sync.utils.validators import (
    parse_date, parse_datetime, validate_candidate_data, validate_candidate_record,
    validate_deadline_record, validate_election_data, validate_election_record, validate_results_link
)

logger = logging.getLogger(__name__)


class InecAdapter(BaseSourceAdapter):
    """Adapter for INEC candidate lists, election timetables and results links."""

    source = Source.INEC_OFFICIAL

    def __init__(
        self,
        db,
        fetcher,
        candidate_urls: Sequence[str] = (),
        timetable_urls: Sequence[str] = (),
        results_urls: Sequence[str] = (),
        **kwargs
    ):
        super().__init__(db, fetcher, **kwargs)
        self.candidate_urls = list(candidate_urls)
        self.timetable_urls = list(timetable_urls)
        self.results_urls = list(results_urls)
        self.elections = ElectionRepository(db)
        self.results_links = ResultsLinkRepository(db)

    def sync_steps(self):
        return [
            ('timetables', self.sync_timetables),
            ('candidates', self.sync_candidates),
            ('results_links', self.sync_results_links),
        ]

    def is_rate_limited(self, error: BaseException) -> bool:
        if isinstance(error, TransportError) and error.status_code == 429:
            return True
        return 'rate limit' in str(error).lower() or 'too many requests' in str(error).lower()

    # ========================================================================
    # Candidates
    # ========================================================================

    async def fetch_candidates(self) -> List[RawCandidate]:
        records = []
        for url, payload in await self.fetch_batches(self.candidate_urls, validate_candidate_data, 'candidates'):
            for record in self._flatten_candidates(payload, url):
                raw = self._to_raw_candidate(record, url)
                if raw is not None:
                    records.append(raw)

        logger.info(f"Fetched {len(records)} candidates from INEC")
        return records

    async def sync_candidates(self):
        report = self.begin_report('candidates')
        for raw in await self.fetch_candidates():
            self.apply_record(
                report,
                f"candidate {raw.full_name}",
                lambda raw=raw: self.resolver.upsert(raw, self.source)[1]
            )
        return self.finish_report(report)

    def _flatten_candidates(self, payload: Dict[str, Any], url: str) -> List[Dict[str, Any]]:
        records = list(payload.get('candidates', []))
        for index, race in enumerate(payload.get('races', [])):
            entries = race.get('candidates') or []
            if not isinstance(entries, list):
                self.skip_record(f"{self.name}: skipped race {index} from {url}: candidates is not a list")
                continue

            defaults = {
                'office': race.get('office'),
                'constituency': race.get('constituency'),
                'state': race.get('state'),
                'election_date': race.get('date') or race.get('election_date'),
            }
            for record in entries:
                if not isinstance(record, dict):
                    self.skip_record(f"{self.name}: skipped race {index} candidate {record!r} from {url}: not a mapping")
                    continue
                merged = {key: value for key, value in defaults.items() if value}
                merged.update({key: value for key, value in record.items() if value not in (None, '')})
                records.append(merged)
        return records

    def _to_raw_candidate(self, record: Dict[str, Any], url: str) -> Optional[RawCandidate]:
        validation = validate_candidate_record(record)
        if not validation.is_valid:
            self.skip_record(
                f"{self.name}: skipped candidate {record.get('full_name')!r} from {url}: "
                f"{'; '.join(validation.errors)}"
            )
            return None

        external_id = record.get('external_id') or record.get('id')
        return self.transform_record(f"candidate {record['full_name']!r}", url, lambda: RawCandidate(
            full_name=record['full_name'],
            party=record['party'],
            office=record['office'],
            constituency=record.get('constituency'),
            state=record.get('state'),
            election_date=parse_date(record.get('election_date')),
            external_id=str(external_id) if external_id not in (None, '') else None,
            avatar_url=record.get('photo_url') or record.get('avatar_url'),
            bio=record.get('bio'),
        ))

    # ========================================================================
    # Timetables
    # ========================================================================

    async def fetch_elections(self) -> List[RawElection]:
        elections = []
        for url, payload in await self.fetch_batches(self.timetable_urls, validate_election_data, 'timetables'):
            by_name: Dict[str, RawElection] = {}
            for record in payload['elections']:
                election = self._to_raw_election(record, url)
                if election is not None:
                    by_name[election.name] = election
                    elections.append(election)

            for record in payload['deadlines']:
                validation = validate_deadline_record(record)
                election = by_name.get(' '.join(record['election'].split())) if validation.is_valid else None
                if election is None:
                    reason = '; '.join(validation.errors) or 'unknown election'
                    self.skip_record(f"{self.name}: skipped deadline {record!r} from {url}: {reason}")
                    continue
                election.deadlines.append(RawDeadline(kind=record['kind'], due_at=parse_datetime(record['due_at'])))

        logger.info(f"Fetched {len(elections)} elections from INEC")
        return elections

    def _to_raw_election(self, record: Dict[str, Any], url: str) -> Optional[RawElection]:
        validation = validate_election_record(record)
        if not validation.is_valid:
            self.skip_record(
                f"{self.name}: skipped election {record.get('name')!r} from {url}: {'; '.join(validation.errors)}"
            )
            return None

        return RawElection(
            name=' '.join(record['name'].split()),
            source_url=record.get('source_url') or url,
            scope=record.get('scope') or 'general',
            state_code=record.get('state_code'),
            date_start=parse_date(record.get('date_start')),
            date_end=parse_date(record.get('date_end')),
            status=record.get('status') or 'upcoming',
        )

    async def sync_timetables(self):
        report = self.begin_report('timetables')
        for raw in await self.fetch_elections():
            self.apply_record(report, f"election {raw.name}", lambda raw=raw: self._store_election(raw))
        return self.finish_report(report)

    def _store_election(self, raw: RawElection) -> UpsertResult:
        election, result = self.elections.upsert_election({
            'name': raw.name,
            'scope': raw.scope,
            'state_code': raw.state_code,
            'date_start': raw.date_start,
            'date_end': raw.date_end,
            'status': raw.status,
            'source_url': raw.source_url,
            'source_hash': generate_checksum(
                [raw.name, raw.scope, raw.state_code, raw.date_start, raw.date_end, raw.status]
            ),
        })
        deadline_changed = False
        for deadline in raw.deadlines:
            outcome = self.elections.upsert_deadline(election, deadline.kind, deadline.due_at, raw.source_url)
            deadline_changed = deadline_changed or outcome != UpsertResult.UNCHANGED

        if result == UpsertResult.UNCHANGED and deadline_changed:
            return UpsertResult.UPDATED
        return result

    # ========================================================================
    # Results links
    # ========================================================================

    async def fetch_results_links(self) -> List[str]:
        """Configured results portal URLs that pass validation."""
        links = []
        for url in self.results_urls:
            validation = validate_results_link(url)
            if not validation.is_valid:
                self.skip_record(f"{self.name}: skipped results link: {'; '.join(validation.errors)}")
                continue
            links.append(url.strip())
        return links

    async def sync_results_links(self):
        report = self.begin_report('results_links')
        for url in await self.fetch_results_links():
            self.apply_record(
                report,
                f"results link {url}",
                lambda url=url: self.results_links.upsert(url, {
                    'host': urlparse(url).hostname,
                    'source': self.name,
                })
            )
        return self.finish_report(report)
