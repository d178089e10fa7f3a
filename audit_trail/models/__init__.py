"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from audit_trail.models.base import Base
from audit_trail.models.enums import ProofMode
from audit_trail.models.audit_event import AuditEvent
from audit_trail.models.daily_snapshot import DailySnapshot
from audit_trail.models.chain_head import ChainHead

__all__ = [
    "Base",
    "ProofMode",
    "AuditEvent",
    "DailySnapshot",
    "ChainHead",
]
