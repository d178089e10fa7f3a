"""
Audit event model.

One row per recorded action. Rows of the same tenant form a
hash chain ordered by id: each row stores the previous row's
hash (prev_hash) and its own keyed hash (row_hash). Rows are
never updated; only the retention purger deletes them.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from audit_trail.models.base import Base


class AuditEvent(Base):
    """
    Immutable, hash-chained record of a business or security event.

    created_at_iso is frozen at write time and is the value used for
    hashing and for day-window queries; created_at is only the store
    time and may be shifted by the database's timezone handling.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_tenant_id_id", "tenant_id", "id"),
        Index("ix_audit_events_tenant_created_iso", "tenant_id", "created_at_iso"),
        # ids are never reused, even after retention empties the table
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    # NULL only for events recorded before a tenant was selected
    tenant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at_iso: Mapped[str] = mapped_column(String(32), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    row_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AuditEvent {self.id} tenant={self.tenant_id} "
            f"{self.action} {self.entity_type}>"
        )
