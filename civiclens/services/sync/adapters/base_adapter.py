"""Base class and raw record types shared by every source adapter.

An adapter owns one upstream. It fetches documents through a SourceFetcher,
rejects structurally invalid batches whole, skips malformed records one by
one, resolves candidates through the CandidateResolver, and reports what it
did in a SyncReport. Adapters never raise for upstream problems: those end
up in the report.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from civiclens.core import metrics
from civiclens.models import Candidate
from civiclens.repositories import CandidateRepository, ManifestoRepository, UpsertResult
from civiclens.services.sync.errors import SyncError
from civiclens.services.sync.fetcher import SourceFetcher
from civiclens.services.sync.matchers.candidate_resolver import CandidateResolver
from civiclens.services.sync.precedence import Source, tier_of
from civiclens.services.sync.reports import SyncReport
from civiclens.services.sync.utils.checksum import ChangeTracker, content_digest, generate_checksum
from civiclens.services.sync.utils.manifesto_parser import parse_manifesto_sections
from civiclens.services.sync.utils.name_normalizer import normalize_office, normalize_party_code
from civiclens.services.sync.utils.retry import is_rate_limit_error, retry_with_backoff
from civiclens.services.sync.utils.validators import parse_datetime

logger = logging.getLogger(__name__)

SyncStep = Callable[[], Awaitable[SyncReport]]

R = TypeVar("R")

# Raised by record transforms and writes fed wrongly shaped upstream data
RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


@dataclass
class RawCandidate:
    full_name: str
    party: str
    office: str
    constituency: Optional[str] = None
    state: Optional[str] = None
    election_date: Optional[date] = None
    external_id: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None


@dataclass
class RawManifesto:
    party: str
    office: str
    raw_text: str
    source_url: str
    candidate_name: Optional[str] = None
    constituency: Optional[str] = None
    version_label: Optional[str] = None
    published_at: Optional[datetime] = None


@dataclass
class RawFactCheck:
    headline: str
    claim: str
    rating: str
    source_url: str
    published_at: Optional[datetime] = None
    subjects: Dict[str, Any] = field(default_factory=dict)
    trust_score: Optional[float] = None


@dataclass
class RawDeadline:
    kind: str
    due_at: datetime


@dataclass
class RawElection:
    name: str
    source_url: str
    scope: str = 'general'
    state_code: Optional[str] = None
    date_start: Optional[date] = None
    date_end: Optional[date] = None
    status: str = 'upcoming'
    deadlines: List[RawDeadline] = field(default_factory=list)


class BaseSourceAdapter(ABC):
    """
    Common fetch, validation and write plumbing for source adapters.

    Subclasses set ``source`` and implement ``sync_steps``. The fetch_*
    methods return normalized records, or an empty list for record types
    the upstream does not provide.
    """

    source: Source

    def __init__(
        self,
        db: Session,
        fetcher: SourceFetcher,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the adapter.

        Args:
            db: SQLAlchemy database session
            fetcher: Raw-fetch collaborator
            max_retries: Retries per request after the first attempt
            base_delay_ms: Base backoff delay
            sleep: Awaitable sleep used between retries
        """
        self.db = db
        self.fetcher = fetcher
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

        self.candidates = CandidateRepository(db)
        self.manifestos = ManifestoRepository(db)
        self.resolver = CandidateResolver(self.candidates)

        self.change_tracker = ChangeTracker()
        self.fetch_errors: List[str] = []
        self._batch_keys: List[str] = []

    @property
    def name(self) -> str:
        return self.source.value

    @property
    def precedence(self) -> int:
        """Lower is more trusted; derived from the shared precedence policy."""
        return int(tier_of(self.source))

    # ========================================================================
    # Fetch contract
    # ========================================================================

    async def fetch_candidates(self) -> List[RawCandidate]:
        return []

    async def fetch_manifestos(self) -> List[RawManifesto]:
        return []

    async def fetch_fact_checks(self) -> List[RawFactCheck]:
        return []

    @abstractmethod
    def sync_steps(self) -> List[Tuple[str, SyncStep]]:
        """Ordered (operation, coroutine function) pairs this adapter runs."""

    def is_rate_limited(self, error: BaseException) -> bool:
        """Classify a fetch failure as rate limiting. Override per upstream."""
        return is_rate_limit_error(error)

    # ========================================================================
    # Fetch plumbing
    # ========================================================================

    async def fetch_payload(self, url: str) -> Optional[Any]:
        """
        Fetch and parse ``url`` with retry and backoff.

        Returns:
            Parsed payload, or None after recording the error
        """
        try:
            document = await retry_with_backoff(
                lambda: self.fetcher.fetch(url),
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                is_rate_limited=self.is_rate_limited,
                sleep=self._sleep,
            )
            return self.fetcher.parse(document)
        except (SyncError, ValueError) as e:
            message = f"{self.name}: failed to fetch {url}: {e}"
            logger.error(message)
            metrics.record_fetch_failure(self.name, type(e).__name__)
            self.fetch_errors.append(message)
            return None

    async def fetch_batches(
        self,
        urls: Iterable[str],
        guard: Callable[[Any], bool],
        kind: str
    ) -> List[Tuple[str, Any]]:
        """
        Fetch every URL, dropping invalid and unchanged batches.

        A batch that fails ``guard`` is rejected whole. A batch whose change
        hint matches the last one seen in this process is skipped.

        Returns:
            (url, payload) pairs still to be applied
        """
        batches = []
        for url in urls:
            payload = await self.fetch_payload(url)
            if payload is None:
                continue

            if not guard(payload):
                message = f"{self.name}: rejected {kind} batch from {url}: failed structural validation"
                logger.warning(message)
                self.fetch_errors.append(message)
                continue

            key = f"{kind}:{url}"
            if not self.change_tracker.has_data_changed(key, generate_checksum(payload)):
                logger.info(f"{self.name}: {kind} from {url} unchanged since last sync, skipping")
                continue

            self._batch_keys.append(key)
            batches.append((url, payload))
        return batches

    def skip_record(self, message: str) -> None:
        """Log a malformed record and keep it for the report."""
        logger.warning(message)
        self.fetch_errors.append(message)

    def transform_record(self, label: str, url: str, build: Callable[[], Optional[R]]) -> Optional[R]:
        """
        Shape one upstream record; a record that cannot be shaped is skipped.

        Returns:
            ``build()``'s result, or None once the record has been skipped
        """
        try:
            return build()
        except RECORD_ERRORS as e:
            self.skip_record(f"{self.name}: skipped {label} from {url}: {type(e).__name__}: {e}")
            return None

    def forget_pending_batches(self) -> None:
        """Drop change hints of batches fetched since the last begin_report."""
        for key in self._batch_keys:
            self.change_tracker.forget(key)
        self._batch_keys = []

    # ========================================================================
    # Reporting and writes
    # ========================================================================

    def begin_report(self, operation: str) -> SyncReport:
        self.fetch_errors = []
        self._batch_keys = []
        return SyncReport(source=self.name, operation=operation)

    def finish_report(self, report: SyncReport) -> SyncReport:
        """Fold fetch errors into ``report`` and close it."""
        for message in self.fetch_errors:
            report.add_error(message)

        # Batches with failures are re-applied next time instead of skipped
        if report.failed:
            self.forget_pending_batches()

        self.fetch_errors = []
        self._batch_keys = []
        report.finish()

        logger.info(
            f"{self.name} {report.operation}: {report.created} created, "
            f"{report.updated} updated, {report.unchanged} unchanged, "
            f"{report.failed} failed ({report.duration_ms}ms)"
        )
        return report

    def apply_record(
        self,
        report: SyncReport,
        label: str,
        write: Callable[[], UpsertResult]
    ) -> Optional[UpsertResult]:
        """
        Run one record write and commit it on its own.

        A failing write is rolled back and recorded; earlier records in the
        batch stay committed.
        """
        try:
            result = write()
            self.db.commit()
        except (SQLAlchemyError, *RECORD_ERRORS) as e:
            self.db.rollback()
            message = f"{self.name}: failed to store {label}: {e}"
            logger.error(message)
            report.add_error(message)
            return None

        report.record(result)
        return result

    def manifesto_from_record(self, record: Dict[str, Any], default_url: str) -> RawManifesto:
        return RawManifesto(
            party=record['party'],
            office=record['office'],
            raw_text=record['raw_text'],
            source_url=record.get('source_url') or default_url,
            candidate_name=record.get('candidate_name'),
            constituency=record.get('constituency'),
            version_label=record.get('version_label'),
            published_at=parse_datetime(record.get('published_at')),
        )

    def store_manifesto(
        self,
        raw: RawManifesto,
        candidate: Optional[Candidate],
        version_label: str
    ) -> UpsertResult:
        """Append a manifesto version unless its checksum is already stored."""
        sections = parse_manifesto_sections(raw.raw_text)
        _, result = self.manifestos.add_version({
            'candidate_id': candidate.id if candidate else None,
            'party_code': normalize_party_code(raw.party),
            'office': normalize_office(raw.office),
            'source': self.name,
            'source_url': raw.source_url,
            'version_label': raw.version_label or version_label,
            'raw_text': raw.raw_text,
            'sections': json.dumps([section.to_dict() for section in sections]),
            'checksum': content_digest(raw.raw_text),
            'published_at': raw.published_at,
        })
        return result

    async def close(self):
        close = getattr(self.fetcher, 'close', None)
        if close is not None:
            await close()
