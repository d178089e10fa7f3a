"""
Tests for canonicalization and digest helpers.

Tests cover:
- Key-order independence of the canonical encoding
- Payload normalization at the write boundary
- UTC timestamp formatting and day bounds
- Keyed row hashes depending on content and predecessor
"""

from datetime import date, datetime, timedelta, timezone

from audit_trail.services.hashing import (
    canonical_event_content,
    compute_row_hash,
    day_bounds_utc,
    digests_equal,
    hmac_sha256_hex,
    normalize_details,
    stable_stringify,
    utc_iso,
)

SECRET = "unit-test-secret-0123456789"


def make_canonical(**overrides):
    fields = dict(
        tenant_id=7,
        user_id="42",
        user_email="clerk@example.com",
        action="STOCK_MOVE",
        entity_type="product",
        entity_id="9",
        ip_address="10.0.0.1",
        user_agent="pytest",
        details={"qty": 3},
        created_at_iso="2024-01-05T09:00:00.000Z",
    )
    fields.update(overrides)
    return canonical_event_content(**fields)


class TestStableStringify:

    def test_key_order_does_not_matter(self):
        a = {"b": 1, "a": {"y": 2, "x": 1}}
        b = {"a": {"x": 1, "y": 2}, "b": 1}
        assert stable_stringify(a) == stable_stringify(b)

    def test_compact_and_unicode_preserved(self):
        assert stable_stringify({"name": "Zoë", "n": [1, 2]}) == '{"n":[1,2],"name":"Zoë"}'


class TestNormalizeDetails:

    def test_none_stays_none(self):
        assert normalize_details(None) is None

    def test_mapping_is_kept(self):
        assert normalize_details({"qty": 3, "sku": "A-1"}) == {"qty": 3, "sku": "A-1"}

    def test_raw_string_is_wrapped(self):
        assert normalize_details("moved 3 units") == {"value": "moved 3 units"}

    def test_list_is_wrapped(self):
        assert normalize_details([1, 2]) == {"value": [1, 2]}


class TestTimestamps:

    def test_utc_iso_has_milliseconds_and_z(self):
        moment = datetime(2024, 1, 5, 9, 30, 15, 123456, tzinfo=timezone.utc)
        assert utc_iso(moment) == "2024-01-05T09:30:15.123Z"

    def test_utc_iso_converts_offsets(self):
        moment = datetime(2024, 1, 5, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        assert utc_iso(moment) == "2024-01-04T23:00:00.000Z"

    def test_day_bounds(self):
        start, end = day_bounds_utc(date(2024, 2, 29))
        assert start == "2024-02-29T00:00:00.000Z"
        assert end == "2024-03-01T00:00:00.000Z"


class TestRowHash:

    def test_deterministic(self):
        assert compute_row_hash(SECRET, make_canonical(), None) == \
            compute_row_hash(SECRET, make_canonical(), None)

    def test_depends_on_predecessor(self):
        canonical = make_canonical()
        assert compute_row_hash(SECRET, canonical, None) != \
            compute_row_hash(SECRET, canonical, "ab" * 32)

    def test_depends_on_content(self):
        assert compute_row_hash(SECRET, make_canonical(), None) != \
            compute_row_hash(SECRET, make_canonical(action="STOCK_ADJUST"), None)

    def test_payload_key_order_does_not_matter(self):
        a = make_canonical(details={"qty": 3, "sku": "A"})
        b = make_canonical(details={"sku": "A", "qty": 3})
        assert a == b

    def test_depends_on_secret(self):
        assert hmac_sha256_hex(SECRET, "x") != hmac_sha256_hex(SECRET + "!", "x")


class TestDigestsEqual:

    def test_none_handling(self):
        assert digests_equal(None, None) is True
        assert digests_equal("abc", None) is False
        assert digests_equal(None, "abc") is False

    def test_values(self):
        assert digests_equal("abc", "abc") is True
        assert digests_equal("abc", "abd") is False
