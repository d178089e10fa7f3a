"""
Audit Trail Service: FastAPI Application.

This is the entry point for the application. All routers are
registered here, and the lifespan owns process-wide state: the
secrets check, logging setup and the daily maintenance task.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from audit_trail.api.audit import router as audit_router
from audit_trail.api.health import router as health_router
from audit_trail.config import get_settings
from audit_trail.logging_config import configure_logging
from audit_trail.models.base import SessionLocal
from audit_trail.services.retention import RetentionPurger
from audit_trail.services.snapshot_service import schedule_daily_snapshots

settings = get_settings()
logger = structlog.get_logger(__name__)


def purge_after_snapshots(db, outcome) -> None:
    """Retention runs only once the day's snapshots are committed."""
    RetentionPurger(db).purge()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # Fail fast: no secret, no attestations worth serving
    settings.validate()

    task = None
    if settings.AUDIT_SCHEDULER_ENABLED:
        task = schedule_daily_snapshots(
            SessionLocal,
            hour_utc=settings.AUDIT_SNAPSHOT_HOUR_UTC,
            minute_utc=settings.AUDIT_SNAPSHOT_MINUTE_UTC,
            on_complete=purge_after_snapshots,
        )
    app.state.snapshot_task = task
    logger.info("audit_service_started", scheduler=task is not None)
    try:
        yield
    finally:
        if task is not None:
            task.stop()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Tamper-evident, hash-chained audit trail",
    lifespan=lifespan,
)

# Register routers
app.include_router(health_router)
app.include_router(audit_router)
