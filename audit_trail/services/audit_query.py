"""
Read-side queries for the reporting layer: event listing and the
per-tenant audit health summary.
"""

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from audit_trail.config import Settings, get_settings
from audit_trail.models.audit_event import AuditEvent
from audit_trail.schemas.audit import (
    AuditEventPage,
    AuditEventResponse,
    AuditHealthResponse,
    DailySnapshotResponse,
)
from audit_trail.services.chain_verifier import ChainVerifier
from audit_trail.services.snapshot_service import SnapshotService

MAX_PAGE_SIZE = 200


def _escape_like(value: str) -> str:
    """Make % and _ in user input match literally."""
    return (
        value.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


class AuditQueryService:

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def list_events(
        self,
        tenant_id: int,
        page: int = 1,
        limit: int = 50,
        action: str | None = None,
        entity_type: str | None = None,
        user_email: str | None = None,
        user_id: str | None = None,
        q: str | None = None,
    ) -> AuditEventPage:
        """Newest first. limit is clamped to 1..200, page to >= 1."""
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))

        conditions = [AuditEvent.tenant_id == tenant_id]
        if action:
            conditions.append(AuditEvent.action == action)
        if entity_type:
            conditions.append(AuditEvent.entity_type == entity_type)
        if user_email:
            conditions.append(
                func.lower(AuditEvent.user_email) == user_email.strip().lower()
            )
        if user_id:
            conditions.append(AuditEvent.user_id == user_id)
        if q:
            like = f"%{_escape_like(q.strip())}%"
            conditions.append(or_(
                AuditEvent.user_email.like(like, escape="\\"),
                AuditEvent.action.like(like, escape="\\"),
                AuditEvent.entity_type.like(like, escape="\\"),
                AuditEvent.entity_id.like(like, escape="\\"),
            ))

        total = self.db.execute(
            select(func.count(AuditEvent.id)).where(*conditions)
        ).scalar()

        rows = self.db.execute(
            select(AuditEvent)
            .where(*conditions)
            .order_by(AuditEvent.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).scalars().all()

        return AuditEventPage(
            page=page,
            limit=limit,
            total=total or 0,
            rows=[AuditEventResponse.model_validate(r) for r in rows],
        )

    def health(self, tenant_id: int, limit: int | None = None) -> AuditHealthResponse:
        """Chain check, latest snapshot and latest row for one tenant."""
        chain = ChainVerifier(self.db, self.settings).verify(tenant_id, limit=limit)
        snapshot = SnapshotService(self.db, self.settings).get_latest_snapshot(tenant_id)

        latest = self.db.execute(
            select(AuditEvent.id, AuditEvent.created_at_iso)
            .where(AuditEvent.tenant_id == tenant_id)
            .order_by(AuditEvent.id.desc())
            .limit(1)
        ).one_or_none()

        return AuditHealthResponse(
            tenant_id=tenant_id,
            chain=chain,
            latest_snapshot=(
                None if snapshot is None
                else DailySnapshotResponse.model_validate(snapshot)
            ),
            latest_event_id=latest.id if latest else None,
            latest_event_created_at_iso=latest.created_at_iso if latest else None,
        )
