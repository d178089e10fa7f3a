"""Audit trail services."""

from audit_trail.services.event_appender import EventAppender
from audit_trail.services.chain_verifier import ChainVerifier
from audit_trail.services.snapshot_service import (
    SnapshotService,
    schedule_daily_snapshots,
)
from audit_trail.services.proof_bundle import ProofBundleBuilder, ProofBundleVerifier
from audit_trail.services.retention import RetentionPurger
from audit_trail.services.audit_query import AuditQueryService
from audit_trail.services.scheduler import DailyTask

__all__ = [
    "EventAppender",
    "ChainVerifier",
    "SnapshotService",
    "schedule_daily_snapshots",
    "ProofBundleBuilder",
    "ProofBundleVerifier",
    "RetentionPurger",
    "AuditQueryService",
    "DailyTask",
]
