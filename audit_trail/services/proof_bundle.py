"""
Proof bundles: exportable, self-contained evidence for a window
of a tenant's audit chain.

A bundle carries the normalized rows of a UTC day or an inclusive
id range, a rows_root binding exactly those rows in order, and a
keyed bundle_hash over everything else (version, generation time,
summary, snapshot, rows_root). Changing any embedded row breaks
rows_root; changing the envelope breaks bundle_hash.

rows_root is a linear accumulator over per-row digests, not a
Merkle tree: it certifies the whole ordered set, and proving a
single row means resending all of them.

Verification needs the same server secret as the build. It is a
self or delegated-server check, not third-party public proof.
"""

from datetime import date, datetime, timezone
from typing import Any, Callable

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from audit_trail.config import Settings, get_settings
from audit_trail.exceptions import InvalidWindow
from audit_trail.models.audit_event import AuditEvent
from audit_trail.models.enums import ProofMode
from audit_trail.schemas.audit import (
    PROOF_VERSION,
    BundleVerifyResult,
    ProofBundle,
    ProofRow,
    ProofSnapshot,
    ProofSummary,
)
from audit_trail.services.hashing import (
    day_bounds_utc,
    digests_equal,
    hmac_sha256_hex,
    sha256_hex,
    stable_stringify,
    utc_iso,
)
from audit_trail.services.snapshot_service import SnapshotService, parse_day

logger = structlog.get_logger(__name__)

ROWS_ROOT_MISMATCH = "rowsRoot mismatch"
BUNDLE_HASH_MISMATCH = "bundleHash mismatch"
INVALID_FORMAT = "Invalid bundle format"


def compute_rows_root(rows: list[ProofRow]) -> str:
    """sha256(d1|d2|...|dn) where di = sha256(canonical row i)."""
    digests = [
        sha256_hex(stable_stringify(row.model_dump(mode="json")))
        for row in rows
    ]
    return sha256_hex("|".join(digests))


def bundle_material(
    version: str,
    generated_at_iso: str,
    summary: ProofSummary,
    snapshot: ProofSnapshot | None,
    rows_root: str,
) -> str:
    return stable_stringify({
        "version": version,
        "generated_at_iso": generated_at_iso,
        "summary": summary.model_dump(mode="json"),
        "snapshot": None if snapshot is None else snapshot.model_dump(mode="json"),
        "rows_root": rows_root,
    })


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProofBundleBuilder:

    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock

    def _select_window(
        self,
        day: date | str | None,
        from_id: int | None,
        to_id: int | None,
    ) -> tuple[ProofMode, date | None]:
        """Validate the selection before anything touches storage."""
        has_range = from_id is not None or to_id is not None
        if day is not None and has_range:
            raise InvalidWindow("Provide either date or from_id & to_id, not both")
        if day is not None:
            try:
                return ProofMode.DATE, parse_day(day)
            except ValueError as e:
                raise InvalidWindow(str(e))
        if from_id is None or to_id is None:
            raise InvalidWindow("Provide either date=YYYY-MM-DD or from_id & to_id")
        if from_id < 1 or to_id < from_id:
            raise InvalidWindow(
                f"Invalid id range: from_id={from_id}, to_id={to_id}"
            )
        return ProofMode.RANGE, None

    def build(
        self,
        tenant_id: int,
        date: date | str | None = None,
        from_id: int | None = None,
        to_id: int | None = None,
        limit: int | None = None,
    ) -> ProofBundle:
        """
        Build a bundle for one tenant's UTC day or inclusive id range.

        In date mode the day's snapshot is attached, created first if
        missing (flushed, the caller commits). More rows than the
        allowed maximum is an InvalidWindow rather than a truncated
        bundle.
        """
        mode, day = self._select_window(date, from_id, to_id)
        if tenant_id is None or tenant_id < 1:
            raise InvalidWindow(f"Invalid tenant id {tenant_id}")
        max_rows = min(
            limit or self.settings.AUDIT_PROOF_MAX_ROWS,
            self.settings.AUDIT_PROOF_MAX_ROWS,
        )
        secret = self.settings.proof_secret

        query = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)
        snapshot = None
        if mode == ProofMode.DATE:
            start_iso, end_iso = day_bounds_utc(day)
            query = query.where(
                AuditEvent.created_at_iso >= start_iso,
                AuditEvent.created_at_iso < end_iso,
            )
            stored = SnapshotService(self.db, self.settings).get_or_create_snapshot(
                tenant_id, day
            )
            snapshot = ProofSnapshot.model_validate(stored)
        else:
            query = query.where(AuditEvent.id >= from_id, AuditEvent.id <= to_id)

        events = self.db.execute(
            query.order_by(AuditEvent.id.asc()).limit(max_rows + 1)
        ).scalars().all()
        if len(events) > max_rows:
            raise InvalidWindow(
                f"Window holds more than {max_rows} rows; narrow the range"
            )

        rows = [ProofRow.model_validate(e) for e in events]
        count = len(rows)
        summary = ProofSummary(
            tenant_id=tenant_id,
            mode=mode,
            date=day.isoformat() if day else None,
            from_id=from_id,
            to_id=to_id,
            count=count,
            start_id=rows[0].id if count else None,
            end_id=rows[-1].id if count else None,
            start_prev_hash=rows[0].prev_hash if count else None,
            end_row_hash=rows[-1].row_hash if count else None,
            last_created_at_iso=rows[-1].created_at_iso if count else None,
        )

        generated_at_iso = utc_iso(self.clock())
        rows_root = compute_rows_root(rows)
        bundle_hash = hmac_sha256_hex(
            secret,
            bundle_material(PROOF_VERSION, generated_at_iso, summary, snapshot, rows_root),
        )

        logger.info(
            "audit_proof_built",
            tenant_id=tenant_id,
            mode=mode.value,
            count=count,
        )
        return ProofBundle(
            version=PROOF_VERSION,
            generated_at_iso=generated_at_iso,
            summary=summary,
            snapshot=snapshot,
            rows_root=rows_root,
            bundle_hash=bundle_hash,
            rows=rows,
        )


class ProofBundleVerifier:
    """Pure re-verification of a bundle; no storage access."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def verify(self, bundle: ProofBundle | dict[str, Any]) -> BundleVerifyResult:
        if not isinstance(bundle, ProofBundle):
            try:
                bundle = ProofBundle.model_validate(bundle)
            except ValidationError:
                return self._reject(INVALID_FORMAT)
        if bundle.version != PROOF_VERSION:
            return self._reject(INVALID_FORMAT)

        if not digests_equal(compute_rows_root(bundle.rows), bundle.rows_root):
            return self._reject(ROWS_ROOT_MISMATCH)

        expected = hmac_sha256_hex(
            self.settings.proof_secret,
            bundle_material(
                bundle.version,
                bundle.generated_at_iso,
                bundle.summary,
                bundle.snapshot,
                bundle.rows_root,
            ),
        )
        if not digests_equal(expected, bundle.bundle_hash):
            return self._reject(BUNDLE_HASH_MISMATCH)

        return BundleVerifyResult(ok=True)

    def _reject(self, reason: str) -> BundleVerifyResult:
        logger.warning("audit_proof_rejected", reason=reason)
        return BundleVerifyResult(ok=False, reason=reason)
