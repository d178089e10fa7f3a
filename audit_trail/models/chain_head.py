"""
Chain head model (per-tenant control row).

Appenders lock this row with SELECT ... FOR UPDATE before reading
the chain tail, so two writers for the same tenant can never stamp
the same prev_hash. It also carries the retention watermark.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from audit_trail.models.base import Base

UNSCOPED = "unscoped"


def scope_for(tenant_id: int | None) -> str:
    """Chain scope key for a tenant; NULL tenants share one chain."""
    return UNSCOPED if tenant_id is None else f"tenant:{tenant_id}"


class ChainHead(Base):
    __tablename__ = "audit_chain_heads"

    scope: Mapped[str] = mapped_column(String(32), primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True
    )
    last_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_row_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Days strictly before this UTC date (YYYY-MM-DD) have been purged
    purged_before: Mapped[str | None] = mapped_column(String(10), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<ChainHead {self.scope} last={self.last_event_id}>"
