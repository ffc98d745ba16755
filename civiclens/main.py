"""
Main FastAPI application for the CivicLens election data sync service.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from civiclens.api.routes import sync
from civiclens.core import metrics
from civiclens.core.config import settings
from civiclens.core.database import SessionLocal, init_db
from civiclens.core.logging import configure_logging, get_logger
from civiclens.core.middleware import CorrelationIdMiddleware
from civiclens.core.scheduler import SyncConfig, SyncScheduler
from civiclens.services.sync.orchestrator import build_orchestrator

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


def build_scheduler(orchestrator) -> SyncScheduler:
    config = SyncConfig(
        enabled=settings.SYNC_ENABLED,
        interval_minutes=settings.SYNC_INTERVAL_MINUTES,
        max_retries=settings.RETRY_MAX_RETRIES,
        parallel_providers=settings.SYNC_PARALLEL_PROVIDERS,
    )
    return SyncScheduler(orchestrator, config, timezone_name=settings.SYNC_TIMEZONE)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    init_db()
    db = SessionLocal()
    orchestrator = build_orchestrator(db, settings)
    scheduler = build_scheduler(orchestrator)

    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler

    if settings.SYNC_ENABLED:
        await scheduler.start()
        logger.info("Sync scheduler started")
    metrics.update_scheduler_metrics(scheduler)
    logger.info("Application started")

    yield

    await scheduler.stop()
    await orchestrator.cleanup()
    db.close()
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Election data ingestion and reconciliation across INEC, Manifesto.NG, party websites and Dubawa",
    lifespan=lifespan
)

app.add_middleware(CorrelationIdMiddleware)

# Prometheus metrics
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
logger.info("Prometheus metrics initialized at /metrics")

# API v1
app.include_router(sync.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "api_version": "v1",
            "sync": "/api/v1/sync",
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/api/health")
async def api_health(request: Request):
    """Detailed API health check with component-level status."""
    health_status = {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "components": {}
    }

    orchestrator = getattr(request.app.state, "orchestrator", None)
    scheduler = getattr(request.app.state, "scheduler", None)

    # 1. Database
    if orchestrator is None:
        health_status["components"]["database"] = {"status": "not_initialized"}
        health_status["status"] = "degraded"
    else:
        try:
            orchestrator.db.execute(text("SELECT 1"))
            health_status["components"]["database"] = {"status": "connected"}
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            health_status["components"]["database"] = {"status": "unhealthy", "error": str(e)}
            health_status["status"] = "unhealthy"

    metrics.update_scheduler_metrics(scheduler)

    # 2. Scheduler
    if scheduler is None:
        health_status["components"]["scheduler"] = {"status": "not_initialized"}
    else:
        status = scheduler.get_status()
        health_status["components"]["scheduler"] = {
            "status": "running" if status["scheduler_running"] else "stopped",
            "sync_in_progress": status["is_running"],
            "next_scheduled_time": status["next_scheduled_time"],
        }

    return health_status


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "civiclens.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
