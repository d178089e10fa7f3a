"""
Chain verifier: read-only walk of a tenant's audit chain.

Rows are streamed in id order. Each row's prev_hash must equal the
row_hash of the row before it; the first mismatch is reported with
the offending id. A window that does not start at the tenant's
genesis (after a purge, or with start_id) can only be checked from
its second row on unless an expected incoming hash is supplied,
typically the end_row_hash of an earlier daily snapshot.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from audit_trail.config import Settings, get_settings
from audit_trail.exceptions import SnapshotNotFound
from audit_trail.models.audit_event import AuditEvent
from audit_trail.models.daily_snapshot import DailySnapshot
from audit_trail.schemas.audit import ChainVerifyResult
from audit_trail.services.hashing import digests_equal, event_row_hash

logger = structlog.get_logger(__name__)

PREV_HASH_MISMATCH = "prev_hash mismatch"
ROW_HASH_MISMATCH = "row_hash mismatch"

# Rows fetched per round trip while streaming
STREAM_BATCH = 1000


class ChainVerifier:

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def _bounded_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.settings.AUDIT_VERIFY_DEFAULT_LIMIT
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return min(limit, self.settings.AUDIT_VERIFY_MAX_LIMIT)

    def verify(
        self,
        tenant_id: int | None,
        limit: int | None = None,
        start_id: int | None = None,
        expected_prev_hash: str | None = None,
        deep: bool = False,
    ) -> ChainVerifyResult:
        """
        Verify up to `limit` rows of a tenant's chain.

        With deep=True each row's keyed row_hash is also recomputed
        from its content, which catches edits to any hashed field.
        An empty window is ok with checked=0.
        """
        limit = self._bounded_limit(limit)
        secret = self.settings.hash_secret if deep else None

        running = expected_prev_hash
        checked = 0
        first_id = None
        last_id = None

        for row in self._stream(tenant_id, start_id, limit):
            if first_id is None:
                first_id = row.id

            if running is not None and not digests_equal(row.prev_hash, running):
                return self._broken(
                    tenant_id, checked, first_id, last_id, running,
                    row.id, PREV_HASH_MISMATCH,
                )

            if deep and not digests_equal(event_row_hash(secret, row), row.row_hash):
                return self._broken(
                    tenant_id, checked, first_id, last_id, running,
                    row.id, ROW_HASH_MISMATCH,
                )

            running = row.row_hash
            last_id = row.id
            checked += 1

        logger.info(
            "audit_chain_verified",
            tenant_id=tenant_id,
            checked=checked,
            start_id=first_id,
            last_id=last_id,
            deep=deep,
        )
        return ChainVerifyResult(
            ok=True,
            tenant_id=tenant_id,
            checked=checked,
            start_id=first_id,
            last_id=last_id,
            last_row_hash=running if checked else None,
        )

    def verify_from_snapshot(
        self,
        tenant_id: int,
        snapshot_date: str,
        limit: int | None = None,
        deep: bool = False,
    ) -> ChainVerifyResult:
        """
        Verify the chain after a stored snapshot, anchored on it.

        The first row after the snapshot's end must link to the
        snapshot's end_row_hash, so history before a purge is
        trusted through the snapshot rather than by assumption.
        Raises SnapshotNotFound when no snapshot is stored for the day.
        """
        limit = self._bounded_limit(limit)
        snapshot = self.db.execute(
            select(DailySnapshot).where(
                DailySnapshot.tenant_id == tenant_id,
                DailySnapshot.snapshot_date == snapshot_date,
            )
        ).scalar_one_or_none()
        if snapshot is None:
            raise SnapshotNotFound(
                f"No snapshot for tenant {tenant_id} on {snapshot_date}"
            )

        if snapshot.end_id is None:
            # Zero-event day: anchor on the closest earlier non-empty one
            snapshot = self.db.execute(
                select(DailySnapshot)
                .where(
                    DailySnapshot.tenant_id == tenant_id,
                    DailySnapshot.snapshot_date < snapshot_date,
                    DailySnapshot.end_id.is_not(None),
                )
                .order_by(DailySnapshot.snapshot_date.desc())
                .limit(1)
            ).scalar_one_or_none()

        start_id = None if snapshot is None else snapshot.end_id + 1
        anchor = None if snapshot is None else snapshot.end_row_hash

        return self.verify(
            tenant_id,
            limit=limit,
            start_id=start_id,
            expected_prev_hash=anchor,
            deep=deep,
        )

    def _stream(self, tenant_id: int | None, start_id: int | None, limit: int):
        """Yield the tenant's rows in id order, in bounded batches."""
        tenant_filter = (
            AuditEvent.tenant_id.is_(None)
            if tenant_id is None
            else AuditEvent.tenant_id == tenant_id
        )
        after_id = None if start_id is None else start_id - 1
        remaining = limit

        while remaining > 0:
            query = select(AuditEvent).where(tenant_filter)
            if after_id is not None:
                query = query.where(AuditEvent.id > after_id)
            batch = self.db.execute(
                query.order_by(AuditEvent.id.asc())
                .limit(min(STREAM_BATCH, remaining))
            ).scalars().all()
            if not batch:
                return
            yield from batch
            after_id = batch[-1].id
            remaining -= len(batch)
            if len(batch) < STREAM_BATCH:
                return

    def _broken(
        self,
        tenant_id,
        checked,
        first_id,
        last_id,
        last_row_hash,
        broken_at_id,
        reason,
    ) -> ChainVerifyResult:
        logger.warning(
            "audit_chain_broken",
            tenant_id=tenant_id,
            broken_at_id=broken_at_id,
            reason=reason,
            checked=checked,
        )
        return ChainVerifyResult(
            ok=False,
            tenant_id=tenant_id,
            checked=checked,
            start_id=first_id,
            last_id=last_id,
            last_row_hash=last_row_hash if checked else None,
            broken_at_id=broken_at_id,
            reason=reason,
        )
