"""
Tests for event listing and the audit health summary.
"""

from datetime import datetime, timezone

from sqlalchemy import update

from audit_trail.models.audit_event import AuditEvent
from audit_trail.services.audit_query import AuditQueryService
from audit_trail.services.snapshot_service import SnapshotService


class TestListEvents:

    def test_newest_first_and_paged(self, record, db_session):
        events = [record(details={"n": i}) for i in range(5)]
        service = AuditQueryService(db_session)

        page_one = service.list_events(7, page=1, limit=2)
        page_three = service.list_events(7, page=3, limit=2)

        assert page_one.total == 5
        assert [r.id for r in page_one.rows] == [events[4].id, events[3].id]
        assert [r.id for r in page_three.rows] == [events[0].id]

    def test_limit_clamped(self, record, db_session):
        record()
        service = AuditQueryService(db_session)
        assert service.list_events(7, limit=0).limit == 1
        assert service.list_events(7, limit=5000).limit == 200
        assert service.list_events(7, page=-3).page == 1

    def test_filters(self, record, db_session):
        record(action="LOGIN", entity_type="user", user_email="ann@example.com")
        record(action="STOCK_MOVE", entity_type="product", entity_id="sku-42")
        record(action="STOCK_MOVE", entity_type="product", user_id="9")
        service = AuditQueryService(db_session)

        assert service.list_events(7, action="STOCK_MOVE").total == 2
        assert service.list_events(7, entity_type="user").total == 1
        assert service.list_events(7, user_email=" ANN@example.com ").total == 1
        assert service.list_events(7, user_id="9").total == 1
        assert service.list_events(7, q="sku-4").total == 1

    def test_email_filter_ignores_case(self, record, db_session):
        record(action="LOGIN", entity_type="user", user_email="Alice@Example.com")
        record(action="LOGIN", entity_type="user", user_email="bob@example.com")
        service = AuditQueryService(db_session)

        assert service.list_events(7, user_email="Alice@Example.com").total == 1
        assert service.list_events(7, user_email="alice@example.com").total == 1
        assert service.list_events(7, user_email="BOB@EXAMPLE.COM").total == 1

    def test_search_wildcards_match_literally(self, record, db_session):
        record(action="STOCK_MOVE", entity_type="product", entity_id="sku-42")
        record(action="DISCOUNT", entity_type="product", entity_id="50%off")
        service = AuditQueryService(db_session)

        assert service.list_events(7, q="%").total == 1
        assert service.list_events(7, q="%").rows[0].entity_id == "50%off"
        assert service.list_events(7, q="_").total == 1
        assert service.list_events(7, q="sku_42").total == 0

    def test_tenant_isolation(self, record, db_session):
        record(tenant_id=7)
        record(tenant_id=8)
        assert AuditQueryService(db_session).list_events(8).total == 1


class TestHealth:

    def test_health_summary(self, record, clock, db_session):
        record()
        clock.set(datetime(2024, 1, 6, 9, 0, tzinfo=timezone.utc))
        last = record()
        SnapshotService(db_session).create_daily_snapshot(7, "2024-01-05")
        db_session.commit()

        health = AuditQueryService(db_session).health(7)

        assert health.chain.ok is True
        assert health.chain.checked == 2
        assert health.latest_snapshot.snapshot_date == "2024-01-05"
        assert health.latest_event_id == last.id
        assert health.latest_event_created_at_iso == "2024-01-06T09:00:00.000Z"

    def test_health_reports_break(self, record, db_session):
        record()
        second = record()
        db_session.execute(
            update(AuditEvent)
            .where(AuditEvent.id == second.id)
            .values(prev_hash="e" * 64)
        )
        db_session.commit()

        health = AuditQueryService(db_session).health(7)
        assert health.chain.ok is False
        assert health.chain.broken_at_id == second.id

    def test_health_of_empty_tenant(self, db_session):
        health = AuditQueryService(db_session).health(7)
        assert health.chain.ok is True
        assert health.latest_snapshot is None
        assert health.latest_event_id is None
