"""
Snapshot service: per-tenant, per-UTC-day chain checkpoints.

A snapshot records the first and last event id of a tenant's day,
the last row's hash and timestamp, and the event count, sealed with
a keyed digest. Later verification can trust the day through the
snapshot instead of replaying from genesis, and the snapshot keeps
vouching for the day after retention deletes its rows.

Rerunning a day recomputes from the rows currently stored and
overwrites the snapshot. That is only safe while the rows exist,
so days the retention purger has already removed are sealed:
their snapshots are returned untouched.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from audit_trail.config import Settings, get_settings
from audit_trail.models.audit_event import AuditEvent
from audit_trail.models.chain_head import ChainHead, scope_for
from audit_trail.models.daily_snapshot import DailySnapshot
from audit_trail.schemas.audit import (
    DailySnapshotResponse,
    SnapshotRunResponse,
    SnapshotRunResult,
)
from audit_trail.services.hashing import day_bounds_utc, hmac_sha256_hex
from audit_trail.services.scheduler import DailyTask

logger = structlog.get_logger(__name__)

SNAPSHOT_VERSION = "snapshot-v1"


def parse_day(value: date | str) -> date:
    """Accept a date or a strict YYYY-MM-DD string."""
    if isinstance(value, datetime):
        raise ValueError("Expected a calendar date, not a datetime")
    if isinstance(value, date):
        return value
    try:
        if len(value) != 10:
            raise ValueError
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")


def snapshot_material(
    tenant_id: int,
    snapshot_date: str,
    events_count: int,
    start_id: int | None,
    end_id: int | None,
    end_row_hash: str | None,
    last_created_at_iso: str | None,
) -> str:
    """Ordered, versioned tuple that the snapshot hash attests."""
    return "|".join([
        SNAPSHOT_VERSION,
        f"tenant={tenant_id}",
        f"date={snapshot_date}",
        f"count={events_count}",
        f"startId={'' if start_id is None else start_id}",
        f"endId={'' if end_id is None else end_id}",
        f"endRowHash={end_row_hash or ''}",
        f"lastCreatedAtIso={last_created_at_iso or ''}",
    ])


class SnapshotService:
    """
    The service takes a database session as a constructor argument.
    create_daily_snapshot only flushes; the caller commits.
    """

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def get_snapshot(self, tenant_id: int, snapshot_date: date | str) -> DailySnapshot | None:
        day = parse_day(snapshot_date).isoformat()
        return self.db.execute(
            select(DailySnapshot).where(
                DailySnapshot.tenant_id == tenant_id,
                DailySnapshot.snapshot_date == day,
            )
        ).scalar_one_or_none()

    def get_latest_snapshot(self, tenant_id: int) -> DailySnapshot | None:
        return self.db.execute(
            select(DailySnapshot)
            .where(DailySnapshot.tenant_id == tenant_id)
            .order_by(DailySnapshot.snapshot_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_or_create_snapshot(
        self, tenant_id: int, snapshot_date: date | str
    ) -> DailySnapshot:
        existing = self.get_snapshot(tenant_id, snapshot_date)
        if existing is not None:
            return existing
        return self.create_daily_snapshot(tenant_id, snapshot_date)

    def is_sealed(self, tenant_id: int, day: str) -> bool:
        """True once retention has purged this tenant's rows for `day`."""
        purged_before = self.db.execute(
            select(ChainHead.purged_before).where(
                ChainHead.scope == scope_for(tenant_id)
            )
        ).scalar_one_or_none()
        return purged_before is not None and day < purged_before

    def create_daily_snapshot(
        self, tenant_id: int, snapshot_date: date | str
    ) -> DailySnapshot:
        """
        Create or refresh the snapshot of one tenant's UTC day.

        Deterministic: with no new rows for the day, rerunning yields
        the same snapshot_hash. A zero-event day still gets a hash
        over its zero-state tuple.
        """
        if tenant_id is None or tenant_id < 1:
            raise ValueError(f"Invalid tenant id {tenant_id}")
        secret = self.settings.snapshot_secret
        day = parse_day(snapshot_date)
        day_str = day.isoformat()

        existing = self.get_snapshot(tenant_id, day)
        if existing is not None and self.is_sealed(tenant_id, day_str):
            logger.warning(
                "audit_snapshot_sealed",
                tenant_id=tenant_id,
                snapshot_date=day_str,
            )
            return existing

        start_iso, end_iso = day_bounds_utc(day)
        window = (
            AuditEvent.tenant_id == tenant_id,
            AuditEvent.created_at_iso >= start_iso,
            AuditEvent.created_at_iso < end_iso,
        )

        count, start_id, end_id = self.db.execute(
            select(
                func.count(AuditEvent.id),
                func.min(AuditEvent.id),
                func.max(AuditEvent.id),
            ).where(*window)
        ).one()

        end_row_hash = None
        last_created_at_iso = None
        if end_id is not None:
            end_row_hash, last_created_at_iso = self.db.execute(
                select(AuditEvent.row_hash, AuditEvent.created_at_iso)
                .where(AuditEvent.id == end_id)
            ).one()

        snapshot_hash = hmac_sha256_hex(
            secret,
            snapshot_material(
                tenant_id, day_str, count, start_id, end_id,
                end_row_hash, last_created_at_iso,
            ),
        )

        snapshot = existing or DailySnapshot(
            tenant_id=tenant_id, snapshot_date=day_str
        )
        snapshot.start_id = start_id
        snapshot.end_id = end_id
        snapshot.end_row_hash = end_row_hash
        snapshot.events_count = count
        snapshot.last_created_at_iso = last_created_at_iso
        snapshot.snapshot_hash = snapshot_hash
        if existing is None:
            self.db.add(snapshot)
        self.db.flush()

        logger.info(
            "audit_snapshot_created",
            tenant_id=tenant_id,
            snapshot_date=day_str,
            events_count=count,
            refreshed=existing is not None,
        )
        return snapshot

    def list_tenant_ids(self) -> list[int]:
        """Tenants known to the core: every tenant that has a chain."""
        rows = self.db.execute(
            select(ChainHead.tenant_id)
            .where(ChainHead.tenant_id.is_not(None))
            .order_by(ChainHead.tenant_id.asc())
        ).scalars().all()
        return list(rows)

    def create_daily_snapshots_for_all_tenants(
        self, snapshot_date: date | str
    ) -> SnapshotRunResponse:
        """
        Snapshot one UTC day for every tenant.

        Each tenant is committed on its own so one failure does not
        discard the others; failures are reported per tenant.
        """
        day_str = parse_day(snapshot_date).isoformat()
        results = []

        for tenant_id in self.list_tenant_ids():
            try:
                snapshot = self.create_daily_snapshot(tenant_id, day_str)
                self.db.commit()
                results.append(SnapshotRunResult(
                    tenant_id=tenant_id,
                    snapshot_date=day_str,
                    ok=True,
                    snapshot=DailySnapshotResponse.model_validate(snapshot),
                ))
            except Exception as e:
                self.db.rollback()
                logger.error(
                    "audit_snapshot_failed",
                    tenant_id=tenant_id,
                    snapshot_date=day_str,
                    exc_info=True,
                )
                results.append(SnapshotRunResult(
                    tenant_id=tenant_id,
                    snapshot_date=day_str,
                    ok=False,
                    error=str(e),
                ))

        return SnapshotRunResponse(snapshot_date=day_str, results=results)

    def missing_snapshot_days(
        self, tenant_id: int, through_day: date | str, max_days: int
    ) -> list[str]:
        """Days up to through_day with events but no snapshot, oldest first."""
        _, end_iso = day_bounds_utc(parse_day(through_day))
        day_col = func.substr(AuditEvent.created_at_iso, 1, 10)
        snapshotted = (
            select(DailySnapshot.snapshot_date)
            .where(DailySnapshot.tenant_id == tenant_id)
        )
        rows = self.db.execute(
            select(day_col)
            .where(
                AuditEvent.tenant_id == tenant_id,
                AuditEvent.created_at_iso < end_iso,
                day_col.not_in(snapshotted),
            )
            .group_by(day_col)
            .order_by(day_col.asc())
            .limit(max_days)
        ).scalars().all()
        return list(rows)

    def backfill_missing_snapshots(
        self, through_day: date | str, max_days: int | None = None
    ) -> list[SnapshotRunResult]:
        """
        Snapshot days a missed run left without one, for every tenant.

        Only days that hold events matter: retention stops at the
        first such day lacking a snapshot. At most max_days per tenant
        per call, oldest first; each day commits on its own.
        """
        if max_days is None:
            max_days = self.settings.AUDIT_SNAPSHOT_BACKFILL_MAX_DAYS
        results = []
        if max_days < 1:
            return results

        for tenant_id in self.list_tenant_ids():
            for day_str in self.missing_snapshot_days(tenant_id, through_day, max_days):
                try:
                    snapshot = self.create_daily_snapshot(tenant_id, day_str)
                    self.db.commit()
                    results.append(SnapshotRunResult(
                        tenant_id=tenant_id,
                        snapshot_date=day_str,
                        ok=True,
                        snapshot=DailySnapshotResponse.model_validate(snapshot),
                    ))
                except Exception as e:
                    self.db.rollback()
                    logger.error(
                        "audit_snapshot_failed",
                        tenant_id=tenant_id,
                        snapshot_date=day_str,
                        exc_info=True,
                    )
                    results.append(SnapshotRunResult(
                        tenant_id=tenant_id,
                        snapshot_date=day_str,
                        ok=False,
                        error=str(e),
                    ))
                    break

        if results:
            logger.info(
                "audit_snapshot_backfilled",
                through_day=parse_day(through_day).isoformat(),
                days=len(results),
                failed=sum(1 for r in results if not r.ok),
            )
        return results


def previous_utc_day(now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return (now - timedelta(days=1)).date()


def schedule_daily_snapshots(
    session_factory: sessionmaker,
    hour_utc: int = 0,
    minute_utc: int = 5,
    on_complete: Callable[[Session, SnapshotRunResponse], object] | None = None,
    settings: Settings | None = None,
) -> DailyTask:
    """
    Start the recurring job that snapshots the previous UTC day and
    backfills earlier days a missed run left without a snapshot.

    on_complete runs after the snapshots are committed, in the same
    session; the retention purge hooks in here so it can never run
    ahead of the day's snapshot write. Returns the started task;
    call stop() on shutdown.
    """

    def run():
        db = session_factory()
        try:
            service = SnapshotService(db, settings)
            yesterday = previous_utc_day()
            outcome = service.create_daily_snapshots_for_all_tenants(yesterday)
            backfilled = service.backfill_missing_snapshots(yesterday)
            logger.info(
                "audit_snapshot_job_completed",
                snapshot_date=outcome.snapshot_date,
                tenants=len(outcome.results),
                failed=sum(1 for r in outcome.results if not r.ok),
                backfilled=len(backfilled),
            )
            if on_complete is not None:
                on_complete(db, outcome)
        finally:
            db.close()

    task = DailyTask(
        "audit-snapshots", run, hour_utc=hour_utc, minute_utc=minute_utc
    )
    return task.start()
