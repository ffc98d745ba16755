"""Integration tests for SyncOrchestrator.

Test Strategy:
1. Full and incremental syncs write one SyncRun each, in precedence order
2. Re-running an unchanged sync changes nothing (idempotence)
3. Official data verifies placeholders and wins on conflicting fields
4. Fact checks never alter candidate or manifesto rows
5. One failing source does not stop the others
6. Findings: conflicts, orphans, duplicates, coverage, integrity, status

Each test follows the pattern:
- Given: Fake upstream feeds and an in-memory database
- When: SyncOrchestrator method is called
- Then: Correct run record and database state
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

sys.path.insert(0, str(Path(__file__).parent.parent))
from conftest import INEC_CANDIDATES_URL, INEC_RESULTS_URL, MANIFESTO_NG_URL

from civiclens.core.logging import get_correlation_id
from civiclens.models import Candidate, FactCheck, Manifesto, ResultsLink, SyncRun
from civiclens.services.sync.errors import AuditWriteError, TransportError, UnknownSourceError
from civiclens.services.sync.precedence import Source
from civiclens.services.sync.reports import SyncReport


def candidate_rows(db_session):
    return sorted(
        (c.id, c.name, c.party_code, c.office, c.state, c.verification_status, c.updated_at)
        for c in db_session.query(Candidate).all()
    )


def manifesto_rows(db_session):
    return sorted((m.id, m.candidate_id, m.checksum) for m in db_session.query(Manifesto).all())


class TestFullSync:
    """Tests for perform_full_sync()."""

    @pytest.mark.asyncio
    async def test_full_sync_runs_every_source_in_order(self, orchestrator, embedding_index):
        """Should run all adapters in precedence order and refresh embeddings."""
        run = await orchestrator.perform_full_sync()

        assert run['status'] == 'completed'
        assert run['provider'] == 'ALL'
        assert run['sync_type'] == 'full'
        assert run['error_message'] is None
        assert [(r['source'], r['operation']) for r in run['reports']] == [
            ('INEC_OFFICIAL', 'timetables'),
            ('INEC_OFFICIAL', 'candidates'),
            ('INEC_OFFICIAL', 'results_links'),
            ('MANIFESTO_NG', 'manifestos'),
            ('PARTY_WEBSITES', 'manifestos'),
            ('DUBAWA_FACTCHECK', 'fact_checks'),
        ]
        # election + 3 candidates + results link + 1 manifesto + 1 fact check;
        # the party site republishes the same text, which is deduplicated
        assert run['records_created'] == 7
        assert run['records_failed'] == 0
        embedding_index.update_all_embeddings.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_full_sync_queues_results_links(self, orchestrator, db_session: Session, fetcher):
        """Should store configured results portals as pending links without fetching them."""
        await orchestrator.perform_full_sync()

        link = db_session.query(ResultsLink).one()
        assert link.url == INEC_RESULTS_URL
        assert link.status == 'pending'
        assert INEC_RESULTS_URL not in fetcher.calls

    @pytest.mark.asyncio
    async def test_full_sync_is_idempotent(self, orchestrator, db_session: Session):
        """Should create and update nothing when upstream data is unchanged."""
        await orchestrator.perform_full_sync()
        candidates_before = candidate_rows(db_session)

        run = await orchestrator.perform_full_sync()

        assert run['records_created'] == 0
        assert run['records_updated'] == 0
        assert candidate_rows(db_session) == candidates_before
        assert db_session.query(Manifesto).count() == 1
        assert db_session.query(FactCheck).count() == 1

    @pytest.mark.asyncio
    async def test_reapplied_data_is_idempotent(self, orchestrator, db_session: Session):
        """Should report unchanged records even when change hints are lost."""
        await orchestrator.perform_full_sync()
        for adapter in orchestrator.adapters.values():
            adapter.change_tracker.clear()

        run = await orchestrator.perform_full_sync()

        assert run['records_created'] == 0
        assert run['records_updated'] == 0
        assert sum(r['unchanged'] for r in run['reports']) > 0

    @pytest.mark.asyncio
    async def test_embedding_failure_is_reported(self, orchestrator, embedding_index):
        """Should complete the run and record the refresh error."""
        embedding_index.update_all_embeddings.side_effect = RuntimeError("index offline")

        run = await orchestrator.perform_full_sync()

        assert run['status'] == 'completed'
        assert "index offline" in run['error_message']


class TestIncrementalSync:
    """Tests for perform_incremental_sync() and sync_source()."""

    @pytest.mark.asyncio
    async def test_defaults_to_non_annotation_sources(self, orchestrator, db_session: Session, embedding_index):
        """Should skip fact checks and the embedding refresh by default."""
        run = await orchestrator.perform_incremental_sync()

        assert run['provider'] == 'INEC_OFFICIAL,MANIFESTO_NG,PARTY_WEBSITES'
        assert run['sync_type'] == 'incremental'
        assert db_session.query(FactCheck).count() == 0
        embedding_index.update_all_embeddings.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requested_sources_run_in_precedence_order(self, orchestrator):
        """Should reorder requested sources by precedence."""
        run = await orchestrator.perform_incremental_sync(['manifesto_ng', 'INEC_OFFICIAL'])

        assert run['provider'] == 'INEC_OFFICIAL,MANIFESTO_NG'
        assert [r['source'] for r in run['reports']] == ['INEC_OFFICIAL'] * 3 + ['MANIFESTO_NG']

    @pytest.mark.asyncio
    async def test_unknown_source_fails_before_running(self, orchestrator, db_session: Session, fetcher):
        """Should raise UnknownSourceError without fetching or writing a run."""
        with pytest.raises(UnknownSourceError):
            await orchestrator.perform_incremental_sync(['INEC_OFFICIAL', 'TWITTER'])

        assert fetcher.calls == []
        assert db_session.query(SyncRun).count() == 0

    @pytest.mark.asyncio
    async def test_unknown_source_is_a_value_error(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.sync_source('NOPE')

    @pytest.mark.asyncio
    async def test_sync_source_writes_no_run(self, orchestrator, db_session: Session):
        """Should return step reports without an audit record."""
        reports = await orchestrator.sync_source('INEC_OFFICIAL')

        assert [r['operation'] for r in reports] == ['timetables', 'candidates', 'results_links']
        assert reports[1]['created'] == 3
        assert db_session.query(SyncRun).count() == 0

    @pytest.mark.asyncio
    async def test_max_retries_override_is_scoped_to_the_run(self, orchestrator, fetcher):
        """Should use the run's retry budget and restore the adapter's own."""
        fetcher.responses[INEC_CANDIDATES_URL] = TransportError("HTTP 502", status_code=502)

        await orchestrator.perform_incremental_sync(['INEC_OFFICIAL'], max_retries=0)

        assert fetcher.calls.count(INEC_CANDIDATES_URL) == 1
        assert orchestrator.adapters[Source.INEC_OFFICIAL].max_retries == 2


class TestPrecedence:
    """Official data wins; other sources never overwrite it."""

    @pytest.mark.asyncio
    async def test_manifesto_resolves_to_official_candidate(self, orchestrator, db_session: Session):
        """Should link aggregator manifesto text to INEC_001 by tuple match."""
        await orchestrator.perform_incremental_sync(['INEC_OFFICIAL', 'MANIFESTO_NG'])

        tinubu = db_session.query(Candidate).filter_by(normalized_name='BOLA AHMED TINUBU').one()
        manifesto = db_session.query(Manifesto).one()
        assert tinubu.external_ids['INEC_OFFICIAL'] == 'INEC_001'
        assert manifesto.candidate_id == tinubu.id
        assert tinubu.pending_verification is False
        assert db_session.query(Candidate).count() == 3

    @pytest.mark.asyncio
    async def test_official_sync_verifies_earlier_placeholder(self, orchestrator, db_session: Session):
        """Should upgrade a placeholder created before the official feed ran."""
        await orchestrator.sync_source('MANIFESTO_NG')
        placeholder = db_session.query(Candidate).one()
        assert placeholder.pending_verification is True

        await orchestrator.sync_source('INEC_OFFICIAL')

        db_session.refresh(placeholder)
        assert placeholder.pending_verification is False
        assert placeholder.external_ids == {'INEC_OFFICIAL': 'INEC_001'}
        assert placeholder.party == 'All Progressives Congress'
        assert placeholder.bio_source == 'INEC_OFFICIAL'
        assert db_session.query(Candidate).count() == 3

    @pytest.mark.asyncio
    async def test_fact_checks_are_non_destructive(self, orchestrator, db_session: Session):
        """Should leave candidates and manifestos exactly as they were."""
        await orchestrator.perform_incremental_sync()
        candidates_before = candidate_rows(db_session)
        manifestos_before = manifesto_rows(db_session)

        reports = await orchestrator.sync_source('DUBAWA_FACTCHECK')

        assert reports[0]['created'] == 1
        assert candidate_rows(db_session) == candidates_before
        assert manifesto_rows(db_session) == manifestos_before


class TestFaultIsolation:
    """A failing source never blocks the rest of the run."""

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_other_sources(self, orchestrator, fetcher, db_session: Session):
        """Should complete the run with the failure recorded."""
        fetcher.responses[MANIFESTO_NG_URL] = TransportError("HTTP 503", status_code=503)

        run = await orchestrator.perform_full_sync()

        assert run['status'] == 'completed'
        assert 'MANIFESTO_NG' in run['error_message']
        assert run['records_failed'] >= 1
        reports = {(r['source'], r['operation']): r for r in run['reports']}
        assert reports[('INEC_OFFICIAL', 'candidates')]['created'] == 3
        assert reports[('DUBAWA_FACTCHECK', 'fact_checks')]['created'] == 1
        assert reports[('MANIFESTO_NG', 'manifestos')]['success'] is False

    @pytest.mark.asyncio
    async def test_crashing_step_is_isolated(self, orchestrator, db_session: Session):
        """Should turn an unexpected exception into a failed step report."""
        adapter = orchestrator.adapters[Source.MANIFESTO_NG]
        adapter.sync_manifestos = AsyncMock(side_effect=RuntimeError("parser exploded"))

        run = await orchestrator.perform_full_sync()

        assert run['status'] == 'completed'
        assert "parser exploded" in run['error_message']
        assert db_session.query(Candidate).count() == 3
        assert db_session.query(FactCheck).count() == 1

    @pytest.mark.asyncio
    async def test_crashed_step_is_reapplied_next_run(self, orchestrator, db_session: Session, monkeypatch):
        """Should forget the change hints of a step that crashed mid-batch."""
        adapter = orchestrator.adapters[Source.INEC_OFFICIAL]

        def exploding_upsert(raw, source):
            raise RuntimeError("resolver exploded")

        monkeypatch.setattr(adapter.resolver, 'upsert', exploding_upsert)
        run = await orchestrator.perform_incremental_sync(['INEC_OFFICIAL'])

        assert "resolver exploded" in run['error_message']
        assert db_session.query(Candidate).count() == 0

        monkeypatch.undo()
        run = await orchestrator.perform_incremental_sync(['INEC_OFFICIAL'])

        candidates = [r for r in run['reports'] if r['operation'] == 'candidates'][0]
        assert candidates['created'] == 3
        assert db_session.query(Candidate).count() == 3

    @pytest.mark.asyncio
    async def test_run_carries_correlation_id(self, orchestrator):
        """Should expose the SyncRun id as correlation id while steps run."""
        seen = []

        async def step():
            seen.append(get_correlation_id())
            return SyncReport(source='DUBAWA_FACTCHECK', operation='fact_checks').finish()

        orchestrator.adapters[Source.DUBAWA_FACTCHECK].sync_fact_checks = step

        run = await orchestrator.perform_incremental_sync(['DUBAWA_FACTCHECK'])

        assert seen == [run['id']]
        assert get_correlation_id() == ''


class TestSyncRunAudit:
    """Tests for the SyncRun audit trail."""

    @pytest.mark.asyncio
    async def test_run_is_recorded(self, orchestrator, db_session: Session):
        run = await orchestrator.perform_full_sync()

        stored = db_session.query(SyncRun).one()
        assert stored.id == run['id']
        assert stored.status == 'completed'
        assert stored.started_at is not None
        assert stored.completed_at >= stored.started_at
        assert orchestrator.get_recent_runs()[0]['id'] == run['id']

    @pytest.mark.asyncio
    async def test_audit_write_failure_fails_the_run(self, orchestrator, db_session: Session, monkeypatch):
        """Should mark the run failed and raise AuditWriteError."""
        def broken_mark_completed(self):
            raise SQLAlchemyError("audit table locked")

        monkeypatch.setattr(SyncRun, 'mark_completed', broken_mark_completed)

        with pytest.raises(AuditWriteError):
            await orchestrator.perform_incremental_sync(['INEC_OFFICIAL'])

        stored = db_session.query(SyncRun).one()
        assert stored.status == 'failed'
        assert "audit table locked" in stored.error_message
        # Adapter writes are not rolled back
        assert db_session.query(Candidate).count() == 3


class TestFindings:
    """Tests for the read-only reports."""

    @pytest.mark.asyncio
    async def test_conflicting_office_is_reported_once(self, orchestrator, db_session: Session,
                                                       fetcher, manifesto_ng_payload):
        """Should report exactly one office conflict naming both sources."""
        manifesto_ng_payload['manifestos'][0]['office'] = 'Vice President'
        fetcher.responses[MANIFESTO_NG_URL] = manifesto_ng_payload
        await orchestrator.perform_incremental_sync(['INEC_OFFICIAL', 'MANIFESTO_NG'])

        report = orchestrator.generate_conflict_report()

        assert len(report) == 1
        conflict = report.conflicts[0]
        assert conflict.field == 'office'
        assert conflict.official_source == 'INEC_OFFICIAL'
        assert conflict.other_source == 'MANIFESTO_NG'
        assert conflict.official_value == 'President'
        assert conflict.other_value == 'Vice President'
        assert report.to_dict()['by_field'] == {'office': 1}

    @pytest.mark.asyncio
    async def test_no_conflicts_when_sources_agree(self, orchestrator):
        await orchestrator.perform_full_sync()
        assert len(orchestrator.generate_conflict_report()) == 0

    @pytest.mark.asyncio
    async def test_conflicts_are_never_resolved(self, orchestrator, db_session: Session,
                                                fetcher, manifesto_ng_payload):
        """Should leave both rows in place after reporting."""
        manifesto_ng_payload['manifestos'][0]['office'] = 'Vice President'
        fetcher.responses[MANIFESTO_NG_URL] = manifesto_ng_payload
        await orchestrator.perform_incremental_sync(['INEC_OFFICIAL', 'MANIFESTO_NG'])

        orchestrator.generate_conflict_report()

        offices = sorted(
            c.office for c in db_session.query(Candidate).filter_by(normalized_name='BOLA AHMED TINUBU')
        )
        assert offices == ['President', 'Vice President']

    @pytest.mark.asyncio
    async def test_orphaned_manifestos(self, orchestrator):
        """Should list party manifestos that could not be linked."""
        await orchestrator.sync_source('PARTY_WEBSITES')

        orphans = orchestrator.find_orphaned_manifestos()

        assert len(orphans) == 1
        assert orphans[0]['candidate_id'] is None
        assert orphans[0]['source'] == 'PARTY_WEBSITES'

    @pytest.mark.asyncio
    async def test_coverage_report(self, orchestrator):
        await orchestrator.perform_full_sync()

        coverage = orchestrator.generate_coverage_report()

        assert coverage['total_candidates'] == 3
        assert coverage['verified'] == 3
        assert coverage['pending_verification'] == 0
        assert coverage['with_manifesto'] == 1
        assert coverage['by_office'] == {'President': {'APC': 1, 'LP': 1, 'PDP': 1}}

    @pytest.mark.asyncio
    async def test_integrity_healthy_after_clean_sync(self, orchestrator):
        await orchestrator.perform_full_sync()

        integrity = orchestrator.validate_data_integrity()

        assert integrity['healthy'] is True
        assert integrity['unknown_party_codes'] == []
        assert integrity['orphaned_manifestos'] == 0

    @pytest.mark.asyncio
    async def test_integrity_flags_unknown_party_codes(self, orchestrator, fetcher, inec_candidates_payload):
        """Should surface codes produced by the lossy party fallback."""
        inec_candidates_payload['candidates'].append({
            'id': 'INEC_050', 'full_name': 'Ngozi Bello', 'party': 'Zenith Labour Party', 'office': 'President'
        })
        fetcher.responses[INEC_CANDIDATES_URL] = inec_candidates_payload
        await orchestrator.perform_incremental_sync(['INEC_OFFICIAL'])

        integrity = orchestrator.validate_data_integrity()

        assert integrity['healthy'] is False
        assert integrity['unknown_party_codes'] == ['ZENITH LAB']

    @pytest.mark.asyncio
    async def test_possible_duplicates(self, orchestrator, fetcher, manifesto_ng_payload):
        manifesto_ng_payload['manifestos'][0]['candidate_name'] = 'Bola Ahmad Tinubu'
        fetcher.responses[MANIFESTO_NG_URL] = manifesto_ng_payload
        await orchestrator.perform_incremental_sync(['INEC_OFFICIAL', 'MANIFESTO_NG'])

        duplicates = orchestrator.find_possible_duplicates()

        assert len(duplicates) == 1
        assert duplicates[0]['placeholder_name'] == 'Bola Ahmad Tinubu'


class TestSyncStatus:
    """Tests for get_sync_status()."""

    def test_unknown_before_first_run(self, orchestrator):
        status = orchestrator.get_sync_status()

        assert status['health_status'] == 'unknown'
        assert status['last_run'] is None
        assert status['sources'] == [
            'INEC_OFFICIAL', 'MANIFESTO_NG', 'PARTY_WEBSITES', 'DUBAWA_FACTCHECK'
        ]

    @pytest.mark.asyncio
    async def test_healthy_after_clean_run(self, orchestrator):
        await orchestrator.perform_full_sync()

        status = orchestrator.get_sync_status()

        assert status['health_status'] == 'healthy'
        assert status['runs_by_status'] == {'completed': 1}
        assert status['candidates']['verified'] == 3
        assert status['last_completed_at'] is not None

    @pytest.mark.asyncio
    async def test_degraded_after_source_errors(self, orchestrator, fetcher):
        fetcher.responses[MANIFESTO_NG_URL] = TransportError("HTTP 503", status_code=503)

        await orchestrator.perform_full_sync()

        assert orchestrator.get_sync_status()['health_status'] == 'degraded'

    @pytest.mark.asyncio
    async def test_cleanup_closes_fetcher(self, orchestrator, fetcher):
        await orchestrator.cleanup()
        assert fetcher.closed is True
