"""Sync API routes for election data synchronization and review.

Provides endpoints for:
- Manual sync triggers (full, incremental, single source)
- Review findings: conflicts, orphaned manifestos, possible duplicates
- Coverage, integrity and sync health monitoring
- Scheduler control (start/stop/status)

Sync triggers share the scheduler's in-flight guard, so a trigger made
while another run is active is refused with 409.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from civiclens.core.scheduler import SyncScheduler
from civiclens.services.sync.errors import AuditWriteError, UnknownSourceError
from civiclens.services.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Dependency returning the orchestrator built at start-up."""
    return request.app.state.orchestrator


def get_sync_scheduler(request: Request) -> SyncScheduler:
    """Dependency returning the scheduler built at start-up."""
    return request.app.state.scheduler


async def _run_trigger(
    scheduler: SyncScheduler,
    label: str,
    operation: Callable[[], Awaitable[Any]]
) -> Any:
    try:
        result = await scheduler.run_exclusive(operation)
    except UnknownSourceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AuditWriteError as e:
        logger.error(f"Manual {label} failed: {e}")
        raise HTTPException(status_code=500, detail=f"{label} failed: {e}")

    if result is None:
        raise HTTPException(status_code=409, detail="A sync is already in progress")
    return result


# ============================================================================
# SYNC TRIGGERS
# ============================================================================

@router.post("/full")
async def trigger_full_sync(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
) -> Dict:
    """
    Run every source in precedence order, then refresh embeddings.

    Returns:
        The finished sync run, including every step report
    """
    run = await _run_trigger(scheduler, 'Full sync', orchestrator.perform_full_sync)
    return {
        'message': 'Full sync completed',
        'run': run
    }


@router.post("/incremental")
async def trigger_incremental_sync(
    sources: Optional[str] = Query(
        None, description="Comma-separated source names; defaults to all non-annotation sources"
    ),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
) -> Dict:
    """Run a subset of sources, always in precedence order."""
    names = [name.strip() for name in sources.split(',') if name.strip()] if sources else None

    run = await _run_trigger(
        scheduler,
        'Incremental sync',
        lambda: orchestrator.perform_incremental_sync(names)
    )
    return {
        'message': 'Incremental sync completed',
        'run': run
    }


@router.post("/sources/{source}")
async def trigger_source_sync(
    source: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
) -> Dict:
    """Run one source's steps without recording a sync run."""
    reports = await _run_trigger(scheduler, f'{source} sync', lambda: orchestrator.sync_source(source))
    return {
        'source': source,
        'reports': reports
    }


# ============================================================================
# FINDINGS
# ============================================================================

@router.get("/conflicts")
async def get_conflicts(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Field disagreements between official and lower-precedence rows."""
    return orchestrator.generate_conflict_report().to_dict()


@router.get("/orphans")
async def get_orphaned_manifestos(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    orphans = orchestrator.find_orphaned_manifestos()
    return {
        'count': len(orphans),
        'manifestos': orphans
    }


@router.get("/duplicates")
async def get_possible_duplicates(
    threshold: int = Query(90, ge=50, le=100, description="Minimum name similarity score"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Unverified placeholders that look like verified candidates."""
    duplicates = orchestrator.find_possible_duplicates(threshold=threshold)
    return {
        'count': len(duplicates),
        'duplicates': duplicates
    }


@router.get("/coverage")
async def get_coverage(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    return orchestrator.generate_coverage_report()


@router.get("/integrity")
async def get_integrity(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    return orchestrator.validate_data_integrity()


# ============================================================================
# STATUS
# ============================================================================

@router.get("/status")
async def get_sync_status(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
) -> Dict:
    """
    Get overall sync health status dashboard.

    Returns:
        Health status (unknown, healthy, degraded, unhealthy), the last run,
        run counts by status, candidate totals and whether a sync is in flight
    """
    status = orchestrator.get_sync_status()
    status['sync_in_progress'] = scheduler.is_running
    return status


@router.get("/runs")
async def get_recent_runs(
    limit: int = Query(20, ge=1, le=200, description="Number of runs to return"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    runs = orchestrator.get_recent_runs(limit=limit)
    return {
        'count': len(runs),
        'runs': runs
    }


# ============================================================================
# SCHEDULER CONTROL ENDPOINTS
# ============================================================================

@router.get("/scheduler/status")
async def get_scheduler_status(
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
) -> Dict:
    return scheduler.get_status()


@router.post("/scheduler/start")
async def start_scheduler(
    interval_minutes: Optional[int] = Query(None, ge=1, le=1440, description="Minutes between syncs"),
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
) -> Dict:
    """
    Start the sync scheduler. The first sync fires immediately.

    Returns:
        Status message
    """
    if scheduler.running:
        return {
            'message': 'Scheduler already running',
            'running': True
        }

    scheduler.update_config(enabled=True)
    await scheduler.start(interval_minutes=interval_minutes)

    return {
        'message': 'Scheduler started successfully',
        'running': True
    }


@router.post("/scheduler/stop")
async def stop_scheduler(
    scheduler: SyncScheduler = Depends(get_sync_scheduler)
) -> Dict:
    if not scheduler.running:
        return {
            'message': 'Scheduler not running',
            'running': False
        }

    await scheduler.stop()

    return {
        'message': 'Scheduler stopped successfully',
        'running': False
    }
