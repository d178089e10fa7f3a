"""
Tests for the ChainVerifier.

Tests cover:
- Intact chains and empty windows
- Tampered prev_hash / row_hash / deleted rows located by id
- Content edits caught only by the deep check
- Windows starting mid-chain, with and without an anchor
- Verification anchored on a daily snapshot
- Limit bounds
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import delete, update

from audit_trail.exceptions import SnapshotNotFound
from audit_trail.models.audit_event import AuditEvent
from audit_trail.services.chain_verifier import (
    PREV_HASH_MISMATCH,
    ROW_HASH_MISMATCH,
    ChainVerifier,
)
from audit_trail.services.snapshot_service import SnapshotService


def record_many(record, n, tenant_id=7):
    return [record(tenant_id=tenant_id, details={"n": i}) for i in range(n)]


def tamper(db_session, event_id, **values):
    db_session.execute(
        update(AuditEvent).where(AuditEvent.id == event_id).values(**values)
    )
    db_session.commit()


class TestIntactChain:

    def test_intact_chain_is_ok(self, record, db_session):
        events = record_many(record, 5)
        result = ChainVerifier(db_session).verify(7)

        assert result.ok is True
        assert result.checked == 5
        assert result.start_id == events[0].id
        assert result.last_id == events[-1].id
        assert result.last_row_hash == events[-1].row_hash
        assert result.broken_at_id is None

    def test_empty_tenant_is_ok(self, db_session):
        result = ChainVerifier(db_session).verify(7)
        assert result.ok is True
        assert result.checked == 0
        assert result.last_row_hash is None

    def test_other_tenants_do_not_interfere(self, record, db_session):
        record(tenant_id=7)
        record(tenant_id=8)
        record(tenant_id=7)
        result = ChainVerifier(db_session).verify(7)
        assert result.ok is True
        assert result.checked == 2

    def test_deep_check_passes_untouched_rows(self, record, db_session):
        record_many(record, 3)
        result = ChainVerifier(db_session).verify(7, deep=True)
        assert result.ok is True
        assert result.checked == 3

    def test_limit_bounds_the_walk(self, record, db_session):
        events = record_many(record, 5)
        result = ChainVerifier(db_session).verify(7, limit=2)
        assert result.ok is True
        assert result.checked == 2
        assert result.last_id == events[1].id

    def test_limit_below_one_rejected(self, db_session):
        with pytest.raises(ValueError):
            ChainVerifier(db_session).verify(7, limit=0)


class TestTampering:

    def test_altered_prev_hash_located(self, record, db_session):
        events = record_many(record, 5)
        tamper(db_session, events[2].id, prev_hash="f" * 64)

        result = ChainVerifier(db_session).verify(7)
        assert result.ok is False
        assert result.broken_at_id == events[2].id
        assert result.reason == PREV_HASH_MISMATCH
        assert result.checked == 2

    def test_altered_row_hash_breaks_next_row(self, record, db_session):
        events = record_many(record, 5)
        tamper(db_session, events[1].id, row_hash="0" * 64)

        result = ChainVerifier(db_session).verify(7)
        assert result.ok is False
        assert result.broken_at_id == events[2].id

    def test_nulled_prev_hash_mid_chain_is_a_break(self, record, db_session):
        events = record_many(record, 3)
        tamper(db_session, events[1].id, prev_hash=None)

        result = ChainVerifier(db_session).verify(7)
        assert result.ok is False
        assert result.broken_at_id == events[1].id

    def test_deleted_row_breaks_successor(self, record, db_session):
        events = record_many(record, 5)
        db_session.execute(delete(AuditEvent).where(AuditEvent.id == events[2].id))
        db_session.commit()

        result = ChainVerifier(db_session).verify(7)
        assert result.ok is False
        assert result.broken_at_id == events[3].id

    def test_content_edit_needs_deep_check(self, record, db_session):
        events = record_many(record, 3)
        tamper(db_session, events[1].id, action="DELETED_NOTHING")

        assert ChainVerifier(db_session).verify(7).ok is True

        result = ChainVerifier(db_session).verify(7, deep=True)
        assert result.ok is False
        assert result.broken_at_id == events[1].id
        assert result.reason == ROW_HASH_MISMATCH


class TestPartialWindows:

    def test_start_id_without_anchor_trusts_first_row(self, record, db_session):
        events = record_many(record, 5)
        result = ChainVerifier(db_session).verify(7, start_id=events[2].id)
        assert result.ok is True
        assert result.checked == 3
        assert result.start_id == events[2].id

    def test_start_id_with_matching_anchor(self, record, db_session):
        events = record_many(record, 5)
        result = ChainVerifier(db_session).verify(
            7, start_id=events[2].id, expected_prev_hash=events[1].row_hash
        )
        assert result.ok is True
        assert result.checked == 3

    def test_start_id_with_wrong_anchor(self, record, db_session):
        events = record_many(record, 5)
        result = ChainVerifier(db_session).verify(
            7, start_id=events[2].id, expected_prev_hash="a" * 64
        )
        assert result.ok is False
        assert result.broken_at_id == events[2].id
        assert result.checked == 0


class TestFromSnapshot:

    def test_anchored_on_snapshot_end(self, record, clock, db_session):
        record_many(record, 3)
        clock.set(datetime(2024, 1, 6, 9, 0, tzinfo=timezone.utc))
        later = record_many(record, 2)

        SnapshotService(db_session).create_daily_snapshot(7, "2024-01-05")
        db_session.commit()

        result = ChainVerifier(db_session).verify_from_snapshot(7, "2024-01-05")
        assert result.ok is True
        assert result.checked == 2
        assert result.start_id == later[0].id

    def test_break_right_after_snapshot_detected(self, record, clock, db_session):
        record_many(record, 3)
        clock.set(datetime(2024, 1, 6, 9, 0, tzinfo=timezone.utc))
        later = record_many(record, 2)
        SnapshotService(db_session).create_daily_snapshot(7, "2024-01-05")
        db_session.commit()
        tamper(db_session, later[0].id, prev_hash="c" * 64)

        result = ChainVerifier(db_session).verify_from_snapshot(7, "2024-01-05")
        assert result.ok is False
        assert result.broken_at_id == later[0].id

    def test_empty_day_falls_back_to_earlier_snapshot(self, record, clock, db_session):
        record_many(record, 2)
        clock.set(datetime(2024, 1, 7, 9, 0, tzinfo=timezone.utc))
        later = record_many(record, 2)

        service = SnapshotService(db_session)
        service.create_daily_snapshot(7, "2024-01-05")
        service.create_daily_snapshot(7, "2024-01-06")
        db_session.commit()

        result = ChainVerifier(db_session).verify_from_snapshot(7, "2024-01-06")
        assert result.ok is True
        assert result.start_id == later[0].id
        assert result.checked == 2

    def test_missing_snapshot_rejected(self, db_session):
        with pytest.raises(SnapshotNotFound):
            ChainVerifier(db_session).verify_from_snapshot(7, "2024-01-05")

    def test_bad_limit_is_not_a_missing_snapshot(self, db_session):
        with pytest.raises(ValueError) as excinfo:
            ChainVerifier(db_session).verify_from_snapshot(7, "2024-01-05", limit=0)
        assert not isinstance(excinfo.value, SnapshotNotFound)
