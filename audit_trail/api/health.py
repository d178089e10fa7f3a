"""
Health check endpoint.

Reports whether the audit store answers, whether the keyed-digest
secrets are usable and whether the daily maintenance task is
running. Load balancers only need the status code; dashboards read
the fields.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from audit_trail.config import get_settings
from audit_trail.exceptions import ConfigMissing
from audit_trail.models.base import get_db
from audit_trail.models.chain_head import ChainHead

router = APIRouter(tags=["Health"])


def _scheduler_state(request: Request) -> str:
    if not get_settings().AUDIT_SCHEDULER_ENABLED:
        return "disabled"
    task = getattr(request.app.state, "snapshot_task", None)
    return "running" if task is not None and task.is_running else "stopped"


@router.get("/health")
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Return service health.

    The database check counts chain heads, which also proves the
    audit tables exist. status is "degraded" when the store is
    unreachable or the secrets are unusable.
    """
    try:
        chains = db.execute(select(func.count()).select_from(ChainHead)).scalar()
        db_status = "healthy"
    except SQLAlchemyError:
        chains = None
        db_status = "unhealthy"

    try:
        get_settings().validate()
        secrets = "configured"
    except ConfigMissing:
        secrets = "missing"

    healthy = db_status == "healthy" and secrets == "configured"
    return {
        "status": "healthy" if healthy else "degraded",
        "service": "audit-trail",
        "database": db_status,
        "secrets": secrets,
        "scheduler": _scheduler_state(request),
        "chains": chains,
    }
