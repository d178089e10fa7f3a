"""
Retention purger: deletes audit events older than the horizon.

Purging removes the oldest part of a chain, and with it the genesis
anchor. Trust in the removed history then rests on daily snapshots,
so the horizon of each tenant stops at the first eligible day that
has no snapshot still matching its live rows. Whole UTC days are
purged, never part of one.
"""

from datetime import date, datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from audit_trail.config import Settings, get_settings
from audit_trail.models.audit_event import AuditEvent
from audit_trail.models.chain_head import ChainHead, UNSCOPED
from audit_trail.models.daily_snapshot import DailySnapshot
from audit_trail.schemas.audit import PurgeResult, TenantPurgeResult
from audit_trail.services.hashing import day_bounds_utc

logger = structlog.get_logger(__name__)


class RetentionPurger:

    def __init__(
        self,
        db: Session,
        retention_days: int | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.retention_days = (
            self.settings.AUDIT_RETENTION_DAYS
            if retention_days is None
            else retention_days
        )

    def purge(self, now: datetime | None = None) -> PurgeResult:
        """
        Delete events past the horizon, tenant by tenant, and commit.

        Returns what was deleted and where each tenant was held back.
        """
        if self.retention_days < 1:
            logger.info("audit_retention_disabled")
            return PurgeResult(enabled=False, retention_days=self.retention_days)

        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(days=self.retention_days)).date().isoformat()

        results = []
        heads = self.db.execute(
            select(ChainHead).order_by(ChainHead.scope.asc())
        ).scalars().all()
        for head in heads:
            if head.scope == UNSCOPED:
                results.append(self._purge_unscoped(head, cutoff))
            else:
                results.append(self._purge_tenant(head, cutoff))
            self.db.commit()

        deleted = sum(r.deleted for r in results)
        logger.info(
            "audit_retention_purged",
            cutoff_date=cutoff,
            retention_days=self.retention_days,
            deleted=deleted,
        )
        return PurgeResult(
            enabled=True,
            retention_days=self.retention_days,
            cutoff_date=cutoff,
            deleted=deleted,
            tenants=results,
        )

    def _purge_tenant(self, head: ChainHead, cutoff: str) -> TenantPurgeResult:
        tenant_id = head.tenant_id
        cutoff_iso, _ = day_bounds_utc(date.fromisoformat(cutoff))
        day_col = func.substr(AuditEvent.created_at_iso, 1, 10)

        # Eligible days with their live row count and last id
        days = self.db.execute(
            select(day_col, func.count(AuditEvent.id), func.max(AuditEvent.id))
            .where(
                AuditEvent.tenant_id == tenant_id,
                AuditEvent.created_at_iso < cutoff_iso,
            )
            .group_by(day_col)
            .order_by(day_col.asc())
        ).all()

        snapshots = {
            s.snapshot_date: s
            for s in self.db.execute(
                select(DailySnapshot).where(
                    DailySnapshot.tenant_id == tenant_id,
                    DailySnapshot.snapshot_date < cutoff,
                )
            ).scalars()
        }

        horizon = cutoff
        held_back_at = None
        reason = None
        for day, count, end_id in days:
            snapshot = snapshots.get(day)
            if snapshot is None:
                reason = "no snapshot"
            elif snapshot.events_count != count or snapshot.end_id != end_id:
                reason = "snapshot does not match live rows"
            else:
                continue
            horizon = held_back_at = day
            break

        if held_back_at is not None:
            logger.warning(
                "audit_retention_held_back",
                tenant_id=tenant_id,
                day=held_back_at,
                reason=reason,
            )

        horizon_iso, _ = day_bounds_utc(date.fromisoformat(horizon))
        deleted = self.db.execute(
            delete(AuditEvent).where(
                AuditEvent.tenant_id == tenant_id,
                AuditEvent.created_at_iso < horizon_iso,
            ).execution_options(synchronize_session=False)
        ).rowcount or 0

        # Seal every purged day against snapshot rewrites
        if deleted and (head.purged_before is None or head.purged_before < horizon):
            head.purged_before = horizon

        return TenantPurgeResult(
            tenant_id=tenant_id,
            deleted=deleted,
            purged_before=head.purged_before,
            held_back_at=held_back_at,
            reason=reason,
        )

    def _purge_unscoped(self, head: ChainHead, cutoff: str) -> TenantPurgeResult:
        """Pre-tenant events have no snapshots; they go by age alone."""
        cutoff_iso, _ = day_bounds_utc(date.fromisoformat(cutoff))
        deleted = self.db.execute(
            delete(AuditEvent).where(
                AuditEvent.tenant_id.is_(None),
                AuditEvent.created_at_iso < cutoff_iso,
            ).execution_options(synchronize_session=False)
        ).rowcount or 0
        if deleted:
            head.purged_before = cutoff
        return TenantPurgeResult(
            tenant_id=None, deleted=deleted, purged_before=head.purged_before
        )
