"""
Canonicalization and digests for audit trail integrity.

Every hash in the system is computed over a canonical string:
JSON with recursively sorted keys and no insignificant whitespace,
so a store that reorders JSON keys cannot break verification.
Keyed digests are HMAC-SHA256 with a server-held secret; plain
SHA-256 is only used inside proof bundles, which are then sealed
by a keyed digest over the whole envelope.
"""

import hashlib
import hmac
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


def _json_default(obj):
    """Serialize the few non-JSON types callers hand us."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def stable_stringify(value: Any) -> str:
    """Deterministic JSON encoding used as hash input."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def normalize_details(details: Any) -> dict[str, Any] | None:
    """
    Normalize an event payload once, at the write boundary.

    Mappings are kept (round-tripped through JSON so only
    JSON-compatible values survive); any other value, including a
    raw string, is wrapped as {"value": ...}. Nothing downstream
    re-interprets the payload.
    """
    if details is None:
        return None
    if not isinstance(details, dict):
        details = {"value": details}
    return json.loads(stable_stringify(details))


def utc_iso(moment: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a Z suffix (lexically sortable)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def day_bounds_utc(day: date) -> tuple[str, str]:
    """[start, end) ISO bounds of a UTC calendar day."""
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    end = datetime.fromordinal(day.toordinal() + 1).replace(tzinfo=timezone.utc)
    return utc_iso(start), utc_iso(end)


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def hmac_sha256_hex(secret: str, data: str) -> str:
    return hmac.new(
        secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def digests_equal(a: str | None, b: str | None) -> bool:
    """Constant-time comparison that tolerates missing values."""
    if a is None or b is None:
        return a is b
    return hmac.compare_digest(a, b)


# --- Row hashes ---

def canonical_event_content(
    *,
    tenant_id: int | None,
    user_id: str | None,
    user_email: str | None,
    action: str,
    entity_type: str | None,
    entity_id: str | None,
    ip_address: str | None,
    user_agent: str | None,
    details: dict[str, Any] | None,
    created_at_iso: str,
) -> str:
    """
    Canonical content of an event's immutable fields.

    The payload is embedded as its own canonical string so the
    row hash never depends on how the store serializes JSON.
    Keep this stable: changing it invalidates every stored chain.
    """
    return stable_stringify({
        "tenant_id": tenant_id,
        "user_id": user_id,
        "user_email": user_email,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "details_c14n": stable_stringify(details),
        "created_at_iso": created_at_iso,
    })


def compute_row_hash(secret: str, canonical: str, prev_hash: str | None) -> str:
    return hmac_sha256_hex(secret, f"{canonical}|prev={prev_hash or ''}")


def event_row_hash(secret: str, event) -> str:
    """Recompute the row hash of a stored AuditEvent."""
    canonical = canonical_event_content(
        tenant_id=event.tenant_id,
        user_id=event.user_id,
        user_email=event.user_email,
        action=event.action,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        ip_address=event.ip_address,
        user_agent=event.user_agent,
        details=event.details,
        created_at_iso=event.created_at_iso,
    )
    return compute_row_hash(secret, canonical, event.prev_hash)
