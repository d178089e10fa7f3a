"""
Shared test fixtures.

Sets up an isolated SQLite test database so tests never touch
the real database. Tables are created before and dropped after
every test. The appender commits through its own sessions, so it
is pointed at the same test database.
"""

import os
from datetime import datetime, timedelta, timezone

# Must be set before the application modules read their settings
TEST_DATABASE_URL = "sqlite:///./test.db"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("AUDIT_HASH_SECRET", "test-audit-hash-secret-0123456789")
os.environ["AUDIT_SCHEDULER_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from audit_trail.api.audit import get_appender
from audit_trail.main import app
from audit_trail.models.base import Base, get_db
from audit_trail.schemas.audit import AuditEventCreate
from audit_trail.services.event_appender import EventAppender


engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


class FakeClock:
    """Deterministic UTC clock that ticks one second per reading."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current

    def set(self, moment: datetime) -> None:
        self.now = moment


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop them after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 5, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def appender(clock):
    return EventAppender(TestSessionLocal, clock=clock)


@pytest.fixture
def record(appender):
    """Append an event and return the stored row."""
    def _record(tenant_id=7, action="STOCK_MOVE", entity_type="product", **fields):
        event = appender.append(AuditEventCreate(
            tenant_id=tenant_id,
            action=action,
            entity_type=entity_type,
            **fields,
        ))
        assert event is not None
        return event
    return _record


@pytest.fixture
def client(db_session):
    """
    Provide a test client with the test database.

    get_db is overridden with our test session and the appender
    with one bound to the test database.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_appender] = lambda: EventAppender(TestSessionLocal)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def session_factory():
    """Session factory bound to the test database, for code that opens its own."""
    return TestSessionLocal
