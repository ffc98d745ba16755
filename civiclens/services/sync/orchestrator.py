"""Sync orchestrator for reconciling election data across sources.

This orchestrator coordinates:
- Adapter runs in precedence order (identity, then content, then annotation)
- Fault isolation: one failing step never blocks the following steps
- One SyncRun audit record per top-level sync call
- Read-only findings: conflicts, orphaned manifestos, possible duplicates,
  coverage and integrity

Conflicts and orphans are reported for human review, never auto-resolved.

Full sync order:
1. INEC timetables
2. INEC candidates
3. INEC results links
4. Manifesto.NG manifestos
5. Party website manifestos
6. Dubawa fact checks
7. Embedding refresh post-pass
"""
import asyncio
import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from civiclens.core import metrics
from civiclens.core.logging import correlation_scope
from civiclens.models import Candidate, VerificationStatus
from civiclens.repositories import CandidateRepository, ManifestoRepository, SyncRunRepository
from civiclens.services.sync.adapters import (
    BaseSourceAdapter, DubawaAdapter, InecAdapter, ManifestoNGAdapter, PartyWebsiteAdapter
)
from civiclens.services.sync.embeddings import EmbeddingIndex, NullEmbeddingIndex, build_embedding_index
from civiclens.services.sync.errors import AuditWriteError, UnknownSourceError
from civiclens.services.sync.fetcher import HttpSourceFetcher, SourceFetcher
from civiclens.services.sync.matchers.candidate_resolver import (
    DUPLICATE_SCORE_THRESHOLD, CandidateResolver
)
from civiclens.services.sync.precedence import (
    OFFICIAL_SOURCE, SOURCE_PRECEDENCE, Source, default_incremental_sources, ordered, parse_source
)
from civiclens.services.sync.reports import ConflictReport, FieldConflict, SyncReport
from civiclens.services.sync.utils.name_normalizer import KNOWN_PARTY_CODES

logger = logging.getLogger(__name__)

CONFLICT_FIELDS = ('name', 'office', 'constituency', 'state')


class SyncOrchestrator:
    """
    Coordinates sync runs across all source adapters.

    This is the main entry point for the sync layer. All sync operations
    and read-only reports go through this orchestrator.
    """

    def __init__(
        self,
        db: Session,
        adapters: Sequence[BaseSourceAdapter],
        embedding_index: Optional[EmbeddingIndex] = None
    ):
        """
        Initialize the sync orchestrator.

        Args:
            db: SQLAlchemy database session shared with the adapters
            adapters: One adapter per source
            embedding_index: Post-pass refresh collaborator for full syncs
        """
        self.db = db
        self.adapters: Dict[Source, BaseSourceAdapter] = {adapter.source: adapter for adapter in adapters}
        self.embedding_index = embedding_index or NullEmbeddingIndex()

        self.candidates = CandidateRepository(db)
        self.manifestos = ManifestoRepository(db)
        self.sync_runs = SyncRunRepository(db)
        self.resolver = CandidateResolver(self.candidates)

    # ========================================================================
    # Sync entry points
    # ========================================================================

    async def perform_full_sync(self) -> Dict[str, Any]:
        """
        Run every adapter in precedence order, then refresh embeddings.

        Returns:
            The finished SyncRun as a dict, including every step report
        """
        sources = [source for source, _ in SOURCE_PRECEDENCE if source in self.adapters]
        return await self._run('ALL', 'full', sources, refresh_embeddings=True)

    async def perform_incremental_sync(
        self,
        sources: Optional[Iterable[str]] = None,
        max_retries: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Run a subset of sources, always in precedence order.

        Args:
            sources: Source names; defaults to every non-annotation source
            max_retries: Per-request retry budget for this run only

        Raises:
            UnknownSourceError: Before anything runs, if a name is unknown
        """
        resolved = self._resolve_sources(sources)
        provider = ','.join(source.value for source in resolved)
        return await self._run(provider, 'incremental', resolved, max_retries=max_retries)

    async def sync_source(self, source: str) -> List[Dict[str, Any]]:
        """Run one adapter's sync steps without writing a SyncRun."""
        (resolved,) = self._resolve_sources([source])
        reports = await self._execute([resolved])
        return [report.to_dict() for report in reports]

    def _resolve_sources(self, sources: Optional[Iterable[str]]) -> List[Source]:
        if sources is None:
            return [source for source in default_incremental_sources() if source in self.adapters]

        resolved = []
        for name in sources:
            try:
                source = parse_source(name.value if isinstance(name, Source) else name)
            except ValueError as e:
                raise UnknownSourceError(str(e)) from None
            if source not in self.adapters:
                raise UnknownSourceError(f"No adapter registered for source '{source.value}'")
            resolved.append(source)

        if not resolved:
            raise UnknownSourceError("No sources requested")
        return ordered(resolved)

    async def _run(
        self,
        provider: str,
        sync_type: str,
        sources: List[Source],
        refresh_embeddings: bool = False,
        max_retries: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            run = self.sync_runs.start_run(provider, sync_type)
            run.mark_running()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise AuditWriteError(f"Could not record start of {sync_type} sync: {e}") from e

        run_id = run.id
        started = time.perf_counter()
        with correlation_scope(run_id):
            logger.info(f"Starting {sync_type} sync {run_id} for {provider}")

            with self._retry_budget(sources, max_retries):
                reports = await self._execute(sources)

            embeddings = await self._refresh_embeddings() if refresh_embeddings else None
            try:
                self._finalize(run_id, reports, embeddings)
            except AuditWriteError:
                metrics.record_sync_run(sync_type, 'failed', time.perf_counter() - started)
                raise

        metrics.record_sync_run(sync_type, 'completed', time.perf_counter() - started)
        return self.sync_runs.find_by_id(run_id).to_dict()

    async def _execute(self, sources: List[Source]) -> List[SyncReport]:
        reports = []
        for source in sources:
            adapter = self.adapters[source]
            for operation, step in adapter.sync_steps():
                report = await self._run_step(adapter, operation, step)
                metrics.record_step_report(report)
                reports.append(report)
        return reports

    async def _run_step(self, adapter: BaseSourceAdapter, operation: str, step) -> SyncReport:
        try:
            return await step()
        except Exception as e:
            # Isolate the failure so later steps still run
            logger.exception(f"{adapter.name} {operation} failed: {e}")
            self.db.rollback()
            # Batches fetched before the crash must be re-read next sync
            adapter.forget_pending_batches()
            report = SyncReport(source=adapter.name, operation=operation)
            report.add_error(f"{adapter.name}: {operation} failed: {e}")
            return report.finish()

    @contextmanager
    def _retry_budget(self, sources: List[Source], max_retries: Optional[int]):
        if max_retries is None:
            yield
            return

        adapters = [self.adapters[source] for source in sources]
        saved = [adapter.max_retries for adapter in adapters]
        for adapter in adapters:
            adapter.max_retries = max_retries
        try:
            yield
        finally:
            for adapter, value in zip(adapters, saved):
                adapter.max_retries = value

    async def _refresh_embeddings(self) -> Dict[str, Any]:
        try:
            result = await self.embedding_index.update_all_embeddings()
        except Exception as e:
            logger.error(f"Embedding refresh failed: {e}")
            return {'updated': 0, 'errors': [f"Embedding refresh failed: {e}"]}

        logger.info(f"Embedding refresh: {result.get('updated', 0)} updated")
        return result

    def _finalize(
        self,
        run_id: str,
        reports: List[SyncReport],
        embeddings: Optional[Dict[str, Any]]
    ) -> None:
        """Close the SyncRun; an audit write failure fails the run."""
        errors = [error for report in reports for error in report.errors]
        if embeddings:
            errors.extend(embeddings.get('errors', []))

        try:
            run = self.sync_runs.find_by_id(run_id)
            run.records_created = sum(report.created for report in reports)
            run.records_updated = sum(report.updated for report in reports)
            run.records_failed = sum(report.failed for report in reports)
            run.error_message = '; '.join(errors) or None
            run.run_metadata = json.dumps({
                'reports': [report.to_dict() for report in reports],
                'embeddings': embeddings,
            })
            run.mark_completed()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self._mark_failed(run_id, f"Audit write failed: {e}")
            raise AuditWriteError(f"Could not finalize sync run {run_id}: {e}") from e

        logger.info(
            f"Sync {run_id} completed: {run.records_created} created, "
            f"{run.records_updated} updated, {run.records_failed} failed, {len(errors)} errors"
        )

    def _mark_failed(self, run_id: str, message: str) -> None:
        try:
            run = self.sync_runs.find_by_id(run_id)
            if run is not None:
                run.mark_failed(message)
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not mark sync run {run_id} as failed: {e}")

    # ========================================================================
    # Findings (read-only)
    # ========================================================================

    def generate_conflict_report(self) -> ConflictReport:
        """
        Diff officially identified candidates against rows sharing their identity.

        For each candidate carrying an official external id, every other row
        with the same (normalized_name, party_code) is compared on
        CONFLICT_FIELDS. A field missing on either side is not a conflict.
        """
        report = ConflictReport()
        official_ids = set()
        officials = self.candidates.find_with_provider(OFFICIAL_SOURCE.value)
        for official in officials:
            official_ids.add(official.id)

        for official in officials:
            for other in self.candidates.find_by_name_and_party(official.normalized_name, official.party_code):
                if other.id == official.id:
                    continue
                # Report a pair of official rows once
                if other.id in official_ids and other.id < official.id:
                    continue
                report.conflicts.extend(self._diff(official, other))

        logger.info(f"Conflict report: {len(report)} conflicts")
        return report

    @staticmethod
    def _diff(official: Candidate, other: Candidate) -> List[FieldConflict]:
        conflicts = []
        for field in CONFLICT_FIELDS:
            official_value = getattr(official, field)
            other_value = getattr(other, field)
            if not official_value or not other_value:
                continue
            if str(official_value).strip().casefold() == str(other_value).strip().casefold():
                continue
            conflicts.append(FieldConflict(
                normalized_name=official.normalized_name,
                party_code=official.party_code,
                field=field,
                official_candidate_id=official.id,
                official_source=OFFICIAL_SOURCE.value,
                official_value=official_value,
                other_candidate_id=other.id,
                other_source=other.bio_source or 'UNKNOWN',
                other_value=other_value,
            ))
        return conflicts

    def find_orphaned_manifestos(self) -> List[Dict[str, Any]]:
        """Manifestos with no resolvable candidate link."""
        return [manifesto.to_dict() for manifesto in self.manifestos.find_orphans()]

    def find_possible_duplicates(self, threshold: int = DUPLICATE_SCORE_THRESHOLD) -> List[Dict[str, Any]]:
        """Unverified placeholders that look like verified candidates."""
        return self.resolver.find_possible_duplicates(threshold=threshold)

    def generate_coverage_report(self) -> Dict[str, Any]:
        """Candidate counts by office and party, plus verification totals."""
        total = self.candidates.count()
        verified = self.candidates.count(Candidate.verification_status == VerificationStatus.VERIFIED.value)
        with_manifesto = self.db.query(Candidate).filter(Candidate.manifestos.any()).count()

        return {
            'total_candidates': total,
            'verified': verified,
            'pending_verification': total - verified,
            'with_manifesto': with_manifesto,
            'by_office': self.candidates.count_by_office_and_party(),
            'generated_at': datetime.utcnow().isoformat(),
        }

    def validate_data_integrity(self) -> Dict[str, Any]:
        """
        Aggregate health check over stored data.

        Reports out-of-vocabulary party codes (including codes produced by
        the lossy fallback), candidates missing required fields, and the
        orphan, conflict and possible-duplicate counts.
        """
        unknown_parties = sorted({
            candidate.party_code
            for candidate in self.candidates.find_all()
            if candidate.party_code and candidate.party_code not in KNOWN_PARTY_CODES
        })
        invalid_records = [
            {'id': candidate.id, 'name': candidate.name, 'party': candidate.party, 'office': candidate.office}
            for candidate in self.candidates.find_missing_required_fields()
        ]
        orphans = len(self.manifestos.find_orphans())
        conflicts = len(self.generate_conflict_report())
        duplicates = len(self.find_possible_duplicates())

        return {
            'healthy': not (unknown_parties or invalid_records or conflicts),
            'unknown_party_codes': unknown_parties,
            'invalid_records': invalid_records,
            'orphaned_manifestos': orphans,
            'conflicts': conflicts,
            'possible_duplicates': duplicates,
            'checked_at': datetime.utcnow().isoformat(),
        }

    # ========================================================================
    # Status
    # ========================================================================

    def get_sync_status(self) -> Dict[str, Any]:
        """
        Return overall sync health status.

        Health is taken from the most recent run: a failed run is unhealthy,
        a completed run with source errors is degraded.
        """
        recent = self.sync_runs.find_recent(limit=1)
        last_run = recent[0] if recent else None
        last_completed = self.sync_runs.find_last_completed()

        if last_run is None:
            health_status = 'unknown'
        elif last_run.status == 'failed':
            health_status = 'unhealthy'
        elif last_run.error_message:
            health_status = 'degraded'
        else:
            health_status = 'healthy'

        total = self.candidates.count()
        verified = self.candidates.count(Candidate.verification_status == VerificationStatus.VERIFIED.value)

        return {
            'health_status': health_status,
            'sources': [source.value for source in self.adapters],
            'last_run': last_run.to_dict() if last_run else None,
            'last_completed_at': (
                last_completed.completed_at.isoformat() if last_completed and last_completed.completed_at else None
            ),
            'runs_by_status': self.sync_runs.count_by_status(),
            'candidates': {
                'total': total,
                'verified': verified,
                'pending_verification': total - verified,
            },
        }

    def get_recent_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        return [run.to_dict() for run in self.sync_runs.find_recent(limit=limit)]

    async def cleanup(self):
        """Close any open connections."""
        for adapter in self.adapters.values():
            await adapter.close()


def build_orchestrator(
    db: Session,
    settings,
    fetcher: Optional[SourceFetcher] = None,
    embedding_index: Optional[EmbeddingIndex] = None,
    sleep=asyncio.sleep
) -> SyncOrchestrator:
    """
    Build the orchestrator and its adapters from settings.

    Called once at process start; everything shares ``db`` and ``fetcher``.
    """
    fetcher = fetcher or HttpSourceFetcher(timeout=settings.SOURCE_REQUEST_TIMEOUT)
    common = {
        'max_retries': settings.RETRY_MAX_RETRIES,
        'base_delay_ms': settings.RETRY_BASE_DELAY_MS,
        'sleep': sleep,
    }

    adapters = [
        InecAdapter(
            db, fetcher,
            candidate_urls=settings.INEC_CANDIDATE_URLS,
            timetable_urls=settings.INEC_TIMETABLE_URLS,
            results_urls=settings.INEC_RESULTS_URLS,
            **common
        ),
        ManifestoNGAdapter(db, fetcher, urls=settings.MANIFESTO_NG_URLS, **common),
        PartyWebsiteAdapter(
            db, fetcher,
            urls=settings.PARTY_WEBSITE_URLS,
            allowlist=settings.PARTY_WEBSITE_ALLOWLIST,
            **common
        ),
        DubawaAdapter(
            db, fetcher,
            urls=settings.DUBAWA_FEED_URLS,
            trust_score=settings.FACT_CHECK_TRUST_SCORE,
            trust_threshold=settings.FACT_CHECK_TRUST_THRESHOLD,
            **common
        ),
    ]

    if embedding_index is None:
        embedding_index = build_embedding_index(settings.EMBEDDINGS_REFRESH_URL, settings.SOURCE_REQUEST_TIMEOUT)

    return SyncOrchestrator(db, adapters, embedding_index=embedding_index)
