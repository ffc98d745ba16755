"""
Sync scheduler for the CivicLens election data layer.

Triggers orchestrator runs on a fixed interval and on demand:
- An immediate sync on start, then one every ``interval_minutes``
- Parallel mode fans out one incremental sync per provider with settled
  results (one failure does not fail the others); sequential mode runs
  providers one by one in precedence order with the same isolation
- Overlapping triggers are dropped, never queued
- Listeners receive the per-provider stats after every run

Scheduler: APScheduler (lightweight, FastAPI-compatible)
"""
import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from civiclens.core import metrics
from civiclens.services.sync.precedence import SOURCE_PRECEDENCE, Source
from civiclens.services.sync.reports import SyncStats

logger = logging.getLogger(__name__)

SYNC_JOB_ID = 'election_data_sync'

SyncListener = Callable[[List[SyncStats]], Any]


@dataclass
class SyncConfig:
    enabled: bool = True
    interval_minutes: int = 60
    max_retries: int = 3
    parallel_providers: bool = True


class SyncScheduler:
    """
    Periodic and on-demand trigger for orchestrator runs.

    ``running`` tells whether the timer is active; ``is_running`` tells
    whether a sync (or an exclusive admin operation) is in flight.
    """

    def __init__(self, orchestrator, config: Optional[SyncConfig] = None, timezone_name: str = 'Africa/Lagos'):
        self.orchestrator = orchestrator
        self.config = config or SyncConfig()
        self.timezone_name = timezone_name
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False
        self.is_running = False
        self.last_stats: List[SyncStats] = []
        self._listeners: List[SyncListener] = []

    @property
    def providers(self) -> List[Source]:
        """Registered providers in precedence order."""
        return [source for source, _ in SOURCE_PRECEDENCE if source in self.orchestrator.adapters]

    # ========================================================================
    # Timer
    # ========================================================================

    async def start(
        self,
        interval_minutes: Optional[int] = None,
        parallel_providers: Optional[bool] = None,
        max_retries: Optional[int] = None
    ):
        """Start the timer and fire an immediate sync."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        overrides = {
            'interval_minutes': interval_minutes,
            'parallel_providers': parallel_providers,
            'max_retries': max_retries,
        }
        self.config = replace(self.config, **{k: v for k, v in overrides.items() if v is not None})

        if not self.config.enabled:
            logger.info("Sync scheduling disabled, not starting scheduler")
            return

        logger.info(
            f"Starting sync scheduler (every {self.config.interval_minutes} min, "
            f"parallel={self.config.parallel_providers})"
        )

        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone_name,
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of the job
                'misfire_grace_time': 300
            }
        )
        self.scheduler.add_job(
            self.sync_now,
            trigger=self._trigger(),
            id=SYNC_JOB_ID,
            name='Election data sync',
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc)  # Immediate first run
        )
        self.scheduler.start()
        self.running = True
        metrics.update_scheduler_metrics(self)

        logger.info(f"Sync scheduler started, next run at {self.next_run_time()}")

    async def stop(self):
        """Stop the timer. An in-flight sync finishes on its own."""
        if not self.running:
            return

        logger.info("Stopping sync scheduler...")
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        self.running = False
        metrics.update_scheduler_metrics(self)
        logger.info("Sync scheduler stopped")

    def _trigger(self) -> IntervalTrigger:
        return IntervalTrigger(minutes=self.config.interval_minutes, timezone=self.timezone_name)

    def next_run_time(self) -> Optional[datetime]:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(SYNC_JOB_ID)
        return job.next_run_time if job else None

    # ========================================================================
    # Runs
    # ========================================================================

    async def sync_now(self) -> List[SyncStats]:
        """
        Sync every provider once.

        Returns:
            Per-provider stats, or [] if a sync was already in flight
        """
        if self.is_running:
            logger.info("Sync already in progress, skipping trigger")
            return []

        self.is_running = True
        metrics.update_scheduler_metrics(self)
        try:
            providers = self.providers
            if self.config.parallel_providers:
                results = await asyncio.gather(
                    *(self._sync_provider(source) for source in providers),
                    return_exceptions=True
                )
            else:
                results = []
                for source in providers:
                    try:
                        results.append(await self._sync_provider(source))
                    except Exception as e:
                        results.append(e)

            stats = [
                result if isinstance(result, SyncStats) else self._failed_stats(source, result)
                for source, result in zip(providers, results)
            ]
            self.last_stats = stats

            succeeded = sum(1 for item in stats if item.success)
            logger.info(f"Sync finished: {succeeded}/{len(stats)} providers succeeded")

            await self._notify(stats)
            return stats
        finally:
            self.is_running = False
            metrics.update_scheduler_metrics(self)

    async def _sync_provider(self, source: Source) -> SyncStats:
        started = datetime.utcnow()
        run = await self.orchestrator.perform_incremental_sync(
            [source.value], max_retries=self.config.max_retries
        )
        return SyncStats(
            provider=source.value,
            last_sync=started,
            success=run['status'] == 'completed' and not run['error_message'],
            changes=run['records_created'] + run['records_updated'],
            duration_ms=int((datetime.utcnow() - started).total_seconds() * 1000),
            error=run['error_message'],
        )

    @staticmethod
    def _failed_stats(source: Source, error: BaseException) -> SyncStats:
        logger.error(f"Sync for {source.value} failed: {error}")
        return SyncStats(
            provider=source.value,
            last_sync=datetime.utcnow(),
            success=False,
            error=str(error),
        )

    async def run_exclusive(self, operation: Callable[[], Awaitable[Any]]) -> Optional[Any]:
        """
        Run an admin-triggered orchestrator call under the in-flight guard.

        Returns:
            The operation's result, or None if a sync was already in flight
        """
        if self.is_running:
            return None

        self.is_running = True
        metrics.update_scheduler_metrics(self)
        try:
            return await operation()
        finally:
            self.is_running = False
            metrics.update_scheduler_metrics(self)

    # ========================================================================
    # Listeners
    # ========================================================================

    def on_sync_complete(self, callback: SyncListener) -> Callable[[], None]:
        """
        Register ``callback(stats)``; it may be sync or async.

        Returns:
            A function that unsubscribes the callback
        """
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _notify(self, stats: List[SyncStats]):
        for listener in list(self._listeners):
            try:
                result = listener(stats)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Sync listener {listener!r} failed: {e}")

    # ========================================================================
    # Status and config
    # ========================================================================

    def get_status(self) -> Dict[str, Any]:
        next_run = self.next_run_time()
        return {
            'is_running': self.is_running,
            'next_scheduled_time': next_run.isoformat() if next_run else None,
            'scheduler_running': self.running,
            'config': asdict(self.config),
            'last_stats': [item.to_dict() for item in self.last_stats],
        }

    def update_config(self, **changes) -> SyncConfig:
        """
        Change scheduling settings; the timer is re-armed if it is running.

        Raises:
            ValueError: On an unknown setting name
        """
        known = {f.name for f in fields(SyncConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown sync config keys: {', '.join(sorted(unknown))}")

        previous = self.config
        self.config = replace(self.config, **changes)

        if self.running and self.scheduler is not None:
            if not self.config.enabled:
                self.scheduler.pause_job(SYNC_JOB_ID)
                logger.info("Sync job paused")
            elif self.config.interval_minutes != previous.interval_minutes or not previous.enabled:
                self.scheduler.reschedule_job(SYNC_JOB_ID, trigger=self._trigger())
                logger.info(f"Sync job rescheduled every {self.config.interval_minutes} min")
            metrics.update_scheduler_metrics(self)

        return self.config
