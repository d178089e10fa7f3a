"""
Audit trail API endpoints.

The API layer is thin: it handles HTTP concerns (status codes,
download framing) and delegates to the services. Verification and
proof checks answer with ok/false results rather than errors, so
dashboards can render negative outcomes. Authentication and tenant
authorization happen in front of this router.
"""

from datetime import date as date_type

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from audit_trail.exceptions import InvalidWindow, SnapshotNotFound
from audit_trail.models.base import SessionLocal, get_db
from audit_trail.schemas.audit import (
    AppendResponse,
    AuditContext,
    AuditEventCreate,
    AuditEventPage,
    AuditEventResponse,
    AuditHealthResponse,
    BundleVerifyResult,
    ChainVerifyResult,
    DailySnapshotResponse,
    ProofBundle,
    PurgeResult,
    SnapshotRunResponse,
)
from audit_trail.services.audit_query import AuditQueryService
from audit_trail.services.chain_verifier import ChainVerifier
from audit_trail.services.event_appender import EventAppender
from audit_trail.services.proof_bundle import ProofBundleBuilder, ProofBundleVerifier
from audit_trail.services.retention import RetentionPurger
from audit_trail.services.snapshot_service import SnapshotService, previous_utc_day

router = APIRouter(prefix="/audit", tags=["Audit"])


def get_appender() -> EventAppender:
    """The appender opens its own sessions, separate from the request's."""
    return EventAppender(SessionLocal)


@router.post("/events", response_model=AppendResponse, status_code=202)
def append_event(
    request: AuditEventCreate,
    http_request: Request,
    appender: EventAppender = Depends(get_appender),
):
    """
    Record an audit event.

    Always 202: a failed audit write is logged server-side and
    reported as recorded=false, never as an error.
    """
    context = AuditContext.from_request(http_request)
    event = appender.append(request, context)
    if event is None:
        return AppendResponse(recorded=False)
    return AppendResponse(
        recorded=True, event=AuditEventResponse.model_validate(event)
    )


@router.get("/tenants/{tenant_id}/events", response_model=AuditEventPage)
def list_events(
    tenant_id: int,
    page: int = 1,
    limit: int = 50,
    action: str | None = None,
    entity_type: str | None = None,
    user_email: str | None = None,
    user_id: str | None = None,
    q: str | None = None,
    db: Session = Depends(get_db),
):
    """List a tenant's events, newest first."""
    service = AuditQueryService(db)
    return service.list_events(
        tenant_id,
        page=page,
        limit=limit,
        action=action,
        entity_type=entity_type,
        user_email=user_email,
        user_id=user_id,
        q=q,
    )


@router.get("/tenants/{tenant_id}/verify", response_model=ChainVerifyResult)
def verify_chain(
    tenant_id: int,
    limit: int | None = None,
    start_id: int | None = None,
    expected_prev_hash: str | None = None,
    deep: bool = False,
    db: Session = Depends(get_db),
):
    """
    Walk a tenant's chain and report the first discontinuity.

    A broken chain is a 200 with ok=false and broken_at_id.
    """
    service = ChainVerifier(db)
    try:
        return service.verify(
            tenant_id,
            limit=limit,
            start_id=start_id,
            expected_prev_hash=expected_prev_hash,
            deep=deep,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get(
    "/tenants/{tenant_id}/verify/from-snapshot/{snapshot_date}",
    response_model=ChainVerifyResult,
)
def verify_chain_from_snapshot(
    tenant_id: int,
    snapshot_date: date_type,
    limit: int | None = None,
    deep: bool = False,
    db: Session = Depends(get_db),
):
    """Verify the chain after a stored snapshot, anchored on its end hash."""
    service = ChainVerifier(db)
    try:
        return service.verify_from_snapshot(
            tenant_id, snapshot_date.isoformat(), limit=limit, deep=deep
        )
    except SnapshotNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get(
    "/tenants/{tenant_id}/snapshots/{snapshot_date}",
    response_model=DailySnapshotResponse,
)
def get_or_create_snapshot(
    tenant_id: int,
    snapshot_date: date_type,
    db: Session = Depends(get_db),
):
    """Return the tenant's snapshot for a UTC day, creating it if missing."""
    service = SnapshotService(db)
    try:
        snapshot = service.get_or_create_snapshot(tenant_id, snapshot_date)
        db.commit()
        return snapshot
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/snapshots/run", response_model=SnapshotRunResponse)
def run_snapshots(
    snapshot_date: date_type | None = None,
    db: Session = Depends(get_db),
):
    """Snapshot a UTC day (default: yesterday) for every tenant."""
    service = SnapshotService(db)
    return service.create_daily_snapshots_for_all_tenants(
        snapshot_date or previous_utc_day()
    )


@router.get("/tenants/{tenant_id}/proof", response_model=ProofBundle)
def get_proof_bundle(
    tenant_id: int,
    date: str | None = None,
    from_id: int | None = None,
    to_id: int | None = None,
    download: bool = False,
    db: Session = Depends(get_db),
):
    """
    Export a proof bundle for a UTC day or an inclusive id range.

    download=true frames the bundle as a file attachment.
    """
    builder = ProofBundleBuilder(db)
    try:
        bundle = builder.build(tenant_id, date=date, from_id=from_id, to_id=to_id)
        # date mode may have created the day's snapshot
        db.commit()
    except InvalidWindow as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    if not download:
        return bundle

    label = date if date else f"{from_id}-{to_id}"
    filename = f"audit-proof-tenant{tenant_id}-{label}.json"
    return JSONResponse(
        content=bundle.model_dump(mode="json"),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/proof/verify", response_model=BundleVerifyResult)
def verify_proof_bundle(bundle: dict = Body(...)):
    """Re-verify a previously exported bundle. Needs no database."""
    return ProofBundleVerifier().verify(bundle)


@router.post("/retention/purge", response_model=PurgeResult)
def purge_expired_events(db: Session = Depends(get_db)):
    """Run the retention purge now."""
    return RetentionPurger(db).purge()


@router.get("/tenants/{tenant_id}/health", response_model=AuditHealthResponse)
def audit_health(
    tenant_id: int,
    limit: int | None = None,
    db: Session = Depends(get_db),
):
    """Chain status, latest snapshot and latest row for a tenant."""
    service = AuditQueryService(db)
    try:
        return service.health(tenant_id, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
