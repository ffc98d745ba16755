"""
Prometheus metrics for the CivicLens sync service.

Metrics exposed:
- HTTP request metrics for the admin API (via prometheus-fastapi-instrumentator
  in main.py)
- Sync run counters and duration histogram, by sync type and final status
- Per-step record outcomes and errors, by source and operation
- Upstream fetch failures after retries, by source and error type
- Scheduler state gauges
"""
from prometheus_client import Counter, Gauge, Histogram

# Sync Run Metrics
sync_runs_total = Counter(
    "civiclens_sync_runs_total",
    "Total orchestrator sync runs",
    ["sync_type", "status"]
)

sync_run_duration_seconds = Histogram(
    "civiclens_sync_run_duration_seconds",
    "Orchestrator sync run duration in seconds",
    ["sync_type"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800)
)

# Adapter Step Metrics
sync_records_total = Counter(
    "civiclens_sync_records_total",
    "Records processed by adapter sync steps",
    ["source", "operation", "outcome"]
)

sync_step_errors_total = Counter(
    "civiclens_sync_step_errors_total",
    "Errors recorded in adapter sync step reports",
    ["source", "operation"]
)

source_fetch_failures_total = Counter(
    "civiclens_source_fetch_failures_total",
    "Upstream fetches that failed after all retries",
    ["source", "error_type"]
)

# Scheduler Metrics
scheduler_running = Gauge(
    "civiclens_scheduler_running",
    "Whether the sync scheduler timer is running (1=running, 0=stopped)"
)

sync_in_progress = Gauge(
    "civiclens_sync_in_progress",
    "Whether a sync or exclusive admin operation is in flight (1=yes, 0=no)"
)

scheduler_next_run_timestamp = Gauge(
    "civiclens_scheduler_next_run_timestamp_seconds",
    "Unix time of the next scheduled sync, 0 when none is scheduled"
)

REPORT_OUTCOMES = ('created', 'updated', 'unchanged', 'failed', 'skipped')


def record_sync_run(sync_type: str, status: str, duration_seconds: float):
    """Record one finished (or failed) orchestrator run."""
    sync_runs_total.labels(sync_type=sync_type, status=status).inc()
    sync_run_duration_seconds.labels(sync_type=sync_type).observe(duration_seconds)


def record_step_report(report):
    """Record the outcome counts and errors of one adapter SyncReport."""
    for outcome in REPORT_OUTCOMES:
        count = getattr(report, outcome)
        if count:
            sync_records_total.labels(
                source=report.source, operation=report.operation, outcome=outcome
            ).inc(count)
    if report.errors:
        sync_step_errors_total.labels(source=report.source, operation=report.operation).inc(len(report.errors))


def record_fetch_failure(source: str, error_type: str = "unknown"):
    """Record an upstream fetch that exhausted its retries."""
    source_fetch_failures_total.labels(source=source, error_type=error_type).inc()


def update_scheduler_metrics(scheduler):
    """
    Update scheduler gauges from a SyncScheduler.

    Called by the scheduler on every state change and by the health check.
    """
    if scheduler is None:
        scheduler_running.set(0)
        sync_in_progress.set(0)
        scheduler_next_run_timestamp.set(0)
        return

    scheduler_running.set(1 if scheduler.running else 0)
    sync_in_progress.set(1 if scheduler.is_running else 0)
    next_run = scheduler.next_run_time()
    scheduler_next_run_timestamp.set(next_run.timestamp() if next_run else 0)
