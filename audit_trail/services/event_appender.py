"""
Event appender: the only writer of the audit chain.

Each append:
1. Resolves the tenant scope from the request context
2. Locks the tenant's chain head (per-process lock + row lock)
3. Reads the current chain tail's row_hash from the head row, which
   outlives the tail row itself once retention purges it
4. Canonicalizes the new event and computes its keyed row_hash
5. Inserts the row with prev_hash = tail and commits, releasing the lock

Audit writes are best-effort: a storage failure is logged and
swallowed so the business action that triggered it is never
blocked by audit infrastructure.
"""

import threading
from datetime import datetime, timezone
from typing import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from audit_trail.config import Settings, get_settings
from audit_trail.models.audit_event import AuditEvent
from audit_trail.models.chain_head import ChainHead, scope_for
from audit_trail.schemas.audit import AuditContext, AuditEventCreate
from audit_trail.services.hashing import (
    canonical_event_content,
    compute_row_hash,
    normalize_details,
    utc_iso,
)

logger = structlog.get_logger(__name__)

# Creating a tenant's head row can race with another process doing
# the same; the loser retries against the winner's row.
HEAD_CREATE_ATTEMPTS = 3


class _ScopeLocks:
    """One in-process lock per chain scope."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_scope(self, scope: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(scope)
            if lock is None:
                lock = self._locks[scope] = threading.Lock()
            return lock


# Shared by every appender in the process so that two appender
# instances cannot interleave on the same tenant.
_scope_locks = _ScopeLocks()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventAppender:
    """
    Appends events to tenant-scoped hash chains.

    The appender owns its sessions (one per append) instead of
    borrowing the caller's: the audit row commits independently of
    the business transaction, and committing is what releases the
    row lock on the chain head.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    def append(
        self,
        fields: AuditEventCreate,
        context: AuditContext | None = None,
    ) -> AuditEvent | None:
        """
        Record an event. Returns the stored row, or None on failure.

        Never raises: callers are business operations that must
        not fail because the audit write did.
        """
        context = context or AuditContext()
        tenant_id = context.tenant_id if context.tenant_id is not None else fields.tenant_id

        try:
            return self._append_locked(tenant_id, fields, context)
        except Exception:
            logger.error(
                "audit_append_failed",
                tenant_id=tenant_id,
                action=fields.action,
                entity_type=fields.entity_type,
                exc_info=True,
            )
            return None

    def _append_locked(
        self,
        tenant_id: int | None,
        fields: AuditEventCreate,
        context: AuditContext,
    ) -> AuditEvent:
        scope = scope_for(tenant_id)
        secret = self.settings.hash_secret

        with _scope_locks.for_scope(scope):
            db = self.session_factory()
            try:
                head = self._lock_head(db, scope, tenant_id)
                tail_hash = head.last_row_hash
                if tail_hash is None:
                    tail_hash = self._tail_hash(db, tenant_id)

                now = self.clock()
                created_at_iso = utc_iso(now)
                details = normalize_details(fields.details)
                event = AuditEvent(
                    tenant_id=tenant_id,
                    user_id=fields.user_id or context.user_id,
                    user_email=fields.user_email or context.user_email,
                    action=fields.action,
                    entity_type=fields.entity_type,
                    entity_id=fields.entity_id,
                    details=details,
                    ip_address=fields.ip or context.ip,
                    user_agent=fields.user_agent or context.user_agent,
                    created_at=now.astimezone(timezone.utc).replace(tzinfo=None),
                    created_at_iso=created_at_iso,
                    prev_hash=tail_hash,
                )
                canonical = canonical_event_content(
                    tenant_id=event.tenant_id,
                    user_id=event.user_id,
                    user_email=event.user_email,
                    action=event.action,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    ip_address=event.ip_address,
                    user_agent=event.user_agent,
                    details=details,
                    created_at_iso=created_at_iso,
                )
                event.row_hash = compute_row_hash(secret, canonical, tail_hash)

                db.add(event)
                db.flush()

                head.last_event_id = event.id
                head.last_row_hash = event.row_hash
                db.commit()
                db.refresh(event)
                db.expunge(event)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        logger.info(
            "audit_event_appended",
            event_id=event.id,
            tenant_id=tenant_id,
            action=event.action,
            genesis=tail_hash is None,
        )
        return event

    def _lock_head(
        self, db: Session, scope: str, tenant_id: int | None
    ) -> ChainHead:
        """
        Lock (creating if needed) the chain head row for a scope.

        SELECT ... FOR UPDATE holds every other writer for this
        tenant until our commit; writers for other tenants lock
        other rows and proceed in parallel.
        """
        for _ in range(HEAD_CREATE_ATTEMPTS):
            head = db.execute(
                select(ChainHead)
                .where(ChainHead.scope == scope)
                .with_for_update()
            ).scalar_one_or_none()
            if head is not None:
                return head

            try:
                db.add(ChainHead(scope=scope, tenant_id=tenant_id))
                db.flush()
            except IntegrityError:
                # Another writer created it first; lock theirs.
                # Nothing else has been written in this session yet.
                db.rollback()
                continue

        raise RuntimeError(f"Could not lock chain head for {scope}")

    def _tail_hash(self, db: Session, tenant_id: int | None) -> str | None:
        """row_hash of the newest event in the tenant's chain, if any."""
        tenant_filter = (
            AuditEvent.tenant_id.is_(None)
            if tenant_id is None
            else AuditEvent.tenant_id == tenant_id
        )
        return db.execute(
            select(AuditEvent.row_hash)
            .where(tenant_filter)
            .order_by(AuditEvent.id.desc())
            .limit(1)
        ).scalar_one_or_none()
