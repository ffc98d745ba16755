#!/usr/bin/env python3
"""
Background runner for the CivicLens election data sync scheduler.

Runs the sync scheduler as a standalone service (systemd, supervisor, or
directly), or performs a single sync and exits.

Usage:
    python run_scheduler.py                        # Run in foreground
    python run_scheduler.py --interval 30          # Sync every 30 minutes
    python run_scheduler.py --once                 # Sync every provider once
    python run_scheduler.py --full                 # One full sync with embedding refresh
    python run_scheduler.py --sources INEC_OFFICIAL,MANIFESTO_NG
"""
import argparse
import asyncio
import json
import signal
import sys

from civiclens.core.config import settings
from civiclens.core.database import SessionLocal, init_db
from civiclens.core.logging import configure_logging, get_logger
from civiclens.core.scheduler import SyncConfig, SyncScheduler
from civiclens.services.sync.errors import SyncError
from civiclens.services.sync.orchestrator import build_orchestrator

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


class SchedulerRunner:
    """Runner for the sync scheduler."""

    def __init__(self, interval_minutes: int, parallel_providers: bool):
        self.interval_minutes = interval_minutes
        self.parallel_providers = parallel_providers
        self.shutdown = asyncio.Event()

    async def start(self):
        """Start the scheduler and run until a shutdown signal."""
        logger.info("🚀 Starting scheduler runner...")

        init_db()
        db = SessionLocal()
        orchestrator = build_orchestrator(db, settings)
        scheduler = SyncScheduler(
            orchestrator,
            SyncConfig(
                enabled=True,
                interval_minutes=self.interval_minutes,
                max_retries=settings.RETRY_MAX_RETRIES,
                parallel_providers=self.parallel_providers,
            ),
            timezone_name=settings.SYNC_TIMEZONE
        )
        scheduler.on_sync_complete(_log_stats)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._set_shutdown)

        try:
            await scheduler.start()
            logger.info("✅ Scheduler is now running. Press Ctrl+C to stop")
            await self.shutdown.wait()
        finally:
            await scheduler.stop()
            await orchestrator.cleanup()
            db.close()
            logger.info("✅ Scheduler runner stopped")

    def _set_shutdown(self):
        logger.info("⏹️  Shutdown signal received")
        self.shutdown.set()


def _log_stats(stats):
    for item in stats:
        outcome = "ok" if item.success else f"failed: {item.error}"
        logger.info(f"{item.provider}: {item.changes} changes in {item.duration_ms} ms ({outcome})")


async def run_once(full: bool = False, sources=None) -> bool:
    """Perform a single sync, print the run and report success."""
    init_db()
    db = SessionLocal()
    orchestrator = build_orchestrator(db, settings)
    try:
        if full:
            run = await orchestrator.perform_full_sync()
        else:
            run = await orchestrator.perform_incremental_sync(sources)
    finally:
        await orchestrator.cleanup()
        db.close()

    print(json.dumps(run, indent=2, default=str))
    return run['status'] == 'completed' and not run['error_message']


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Run the CivicLens election data sync scheduler'
    )

    parser.add_argument(
        '--interval',
        type=int,
        default=settings.SYNC_INTERVAL_MINUTES,
        metavar='MINUTES',
        help='Minutes between scheduled syncs'
    )

    parser.add_argument(
        '--sequential',
        action='store_true',
        help='Sync providers one by one instead of in parallel'
    )

    parser.add_argument(
        '--once',
        action='store_true',
        help='Run one incremental sync and exit'
    )

    parser.add_argument(
        '--full',
        action='store_true',
        help='Run one full sync (all sources plus embedding refresh) and exit'
    )

    parser.add_argument(
        '--sources',
        type=str,
        metavar='NAMES',
        help='Comma-separated sources for --once'
    )

    args = parser.parse_args()

    if args.once or args.full or args.sources:
        sources = [name.strip() for name in args.sources.split(',')] if args.sources else None
        try:
            ok = asyncio.run(run_once(full=args.full, sources=sources))
        except SyncError as e:
            logger.error(f"❌ Sync failed: {e}")
            return 1
        return 0 if ok else 1

    runner = SchedulerRunner(
        interval_minutes=args.interval,
        parallel_providers=settings.SYNC_PARALLEL_PROVIDERS and not args.sequential
    )

    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        logger.info("🛑 Received interrupt, shutting down...")
    return 0


if __name__ == '__main__':
    sys.exit(main())
