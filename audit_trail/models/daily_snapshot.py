"""
Daily snapshot model.

A per-tenant, per-UTC-day checkpoint of the chain. It records
where the day's segment starts and ends and the hash of its last
row, attested with a keyed digest. Snapshots are the trust anchor
that survives once retention has deleted the day's raw rows.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from audit_trail.models.base import Base


class DailySnapshot(Base):
    __tablename__ = "audit_daily_snapshots"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "snapshot_date", name="uq_audit_snapshot_tenant_date"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    # UTC calendar day, YYYY-MM-DD
    snapshot_date: Mapped[str] = mapped_column(String(10), nullable=False)
    start_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_row_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    events_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_created_at_iso: Mapped[str | None] = mapped_column(
        String(32), nullable=True
    )
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<DailySnapshot tenant={self.tenant_id} {self.snapshot_date} "
            f"count={self.events_count}>"
        )
