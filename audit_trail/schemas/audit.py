"""
Pydantic schemas for the audit trail.

These define the contract with business collaborators (what an
append looks like), with the reporting layer (list, verify,
snapshot responses) and the proof bundle document itself.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from audit_trail.models.enums import ProofMode


PROOF_VERSION = "proof-v1"


# --- Append ---

class AuditContext(BaseModel):
    """Who and where an action came from, resolved per request."""
    tenant_id: int | None = None
    user_id: str | None = None
    user_email: str | None = None
    ip: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(
        cls,
        request,
        tenant_id: int | None = None,
        user_id: str | None = None,
        user_email: str | None = None,
    ) -> "AuditContext":
        """
        Build a context from a Starlette request.

        The client IP is the first X-Forwarded-For hop when present,
        otherwise the peer address.
        """
        forwarded = request.headers.get("x-forwarded-for", "")
        ip = forwarded.split(",")[0].strip() or None
        if ip is None and request.client is not None:
            ip = request.client.host
        return cls(
            tenant_id=tenant_id,
            user_id=user_id,
            user_email=user_email,
            ip=ip,
            user_agent=request.headers.get("user-agent"),
        )


class AuditEventCreate(BaseModel):
    """An append trigger from a business collaborator."""
    tenant_id: int | None = None
    user_id: str | None = Field(default=None, max_length=64)
    user_email: str | None = Field(default=None, max_length=255)
    action: str = Field(min_length=1, max_length=64)
    entity_type: str = Field(min_length=1, max_length=64)
    entity_id: str | None = Field(default=None, max_length=64)
    # Raw string or structured value; normalized once by the appender
    details: Any = None
    ip: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=512)

    @field_validator("user_id", "entity_id", mode="before")
    @classmethod
    def ids_as_strings(cls, v):
        if v is None:
            return v
        return str(v)


class AuditEventResponse(BaseModel):
    id: int
    tenant_id: int | None
    user_id: str | None
    user_email: str | None
    action: str
    entity_type: str
    entity_id: str | None
    details: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime
    created_at_iso: str
    prev_hash: str | None
    row_hash: str

    model_config = {"from_attributes": True}


class AppendResponse(BaseModel):
    recorded: bool
    event: AuditEventResponse | None = None


class AuditEventPage(BaseModel):
    page: int
    limit: int
    total: int
    rows: list[AuditEventResponse]


# --- Chain verification ---

class ChainVerifyResult(BaseModel):
    """Outcome of walking a tenant's chain. Breaks are data, not errors."""
    ok: bool
    tenant_id: int | None
    checked: int
    start_id: int | None = None
    last_id: int | None = None
    last_row_hash: str | None = None
    broken_at_id: int | None = None
    reason: str | None = None


# --- Snapshots ---

class DailySnapshotResponse(BaseModel):
    tenant_id: int
    snapshot_date: str
    start_id: int | None
    end_id: int | None
    end_row_hash: str | None
    events_count: int
    last_created_at_iso: str | None
    snapshot_hash: str
    created_at: datetime

    model_config = {"from_attributes": True}


class SnapshotRunResult(BaseModel):
    """Per-tenant outcome of a snapshot run over all tenants."""
    tenant_id: int
    snapshot_date: str
    ok: bool
    snapshot: DailySnapshotResponse | None = None
    error: str | None = None


class SnapshotRunResponse(BaseModel):
    snapshot_date: str
    results: list[SnapshotRunResult]


# --- Proof bundles ---
# Bundle documents reject unknown keys: every field a bundle carries
# must be covered by rows_root or bundle_hash.

class ProofRow(BaseModel):
    """The stable field set of an event as embedded in a bundle."""
    id: int
    tenant_id: int | None
    user_id: str | None
    user_email: str | None
    action: str | None
    entity_type: str | None
    entity_id: str | None
    details: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    prev_hash: str | None
    row_hash: str | None
    created_at_iso: str | None

    model_config = {"from_attributes": True, "extra": "forbid"}


class ProofSnapshot(DailySnapshotResponse):
    """A daily snapshot as embedded in a bundle."""

    model_config = {"from_attributes": True, "extra": "forbid"}


class ProofSummary(BaseModel):
    tenant_id: int
    mode: ProofMode
    date: str | None = None
    from_id: int | None = None
    to_id: int | None = None
    count: int
    start_id: int | None
    end_id: int | None
    start_prev_hash: str | None
    end_row_hash: str | None
    last_created_at_iso: str | None

    model_config = {"extra": "forbid"}


class ProofBundle(BaseModel):
    version: str
    generated_at_iso: str
    summary: ProofSummary
    snapshot: ProofSnapshot | None = None
    rows_root: str
    bundle_hash: str
    rows: list[ProofRow]

    model_config = {"extra": "forbid"}


class BundleVerifyResult(BaseModel):
    ok: bool
    reason: str | None = None


# --- Retention and health ---

class TenantPurgeResult(BaseModel):
    tenant_id: int | None
    deleted: int
    purged_before: str | None
    held_back_at: str | None = None
    reason: str | None = None


class PurgeResult(BaseModel):
    enabled: bool
    retention_days: int
    cutoff_date: str | None = None
    deleted: int = 0
    tenants: list[TenantPurgeResult] = Field(default_factory=list)


class AuditHealthResponse(BaseModel):
    tenant_id: int
    chain: ChainVerifyResult
    latest_snapshot: DailySnapshotResponse | None
    latest_event_id: int | None
    latest_event_created_at_iso: str | None
