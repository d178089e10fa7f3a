"""
Tests for the health check endpoint.
"""

from audit_trail.config import get_settings


def test_health_check_returns_200(client):
    """
    Verify the health endpoint responds with HTTP 200.

    If this fails, nothing else will work.
    """
    response = client.get("/health")
    assert response.status_code == 200


def test_health_check_returns_service_name(client):
    """
    Verify the response includes the correct service name.

    Monitoring systems parse this field.
    """
    response = client.get("/health")
    data = response.json()
    assert data["service"] == "audit-trail"


def test_health_check_reports_database_status(client):
    response = client.get("/health")
    data = response.json()
    assert data["database"] in ("healthy", "unhealthy")


def test_health_reports_audit_state(client):
    response = client.get("/health")
    data = response.json()
    assert data["status"] == "healthy"
    assert data["secrets"] == "configured"
    assert data["scheduler"] == "disabled"
    assert data["chains"] == 0


def test_health_counts_chains(client):
    client.post(
        "/audit/events",
        json={"tenant_id": 7, "action": "LOGIN", "entity_type": "user"},
    )
    client.post(
        "/audit/events",
        json={"tenant_id": 8, "action": "LOGIN", "entity_type": "user"},
    )
    assert client.get("/health").json()["chains"] == 2


def test_health_degraded_without_secret(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "AUDIT_HASH_SECRET", "")
    data = client.get("/health").json()
    assert data["secrets"] == "missing"
    assert data["status"] == "degraded"
