"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reflects whether the user table answers
  - No authentication required
"""

from __future__ import annotations

from sqlalchemy import text

from api.main import API_VERSION, app


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == API_VERSION
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_reports_database_error(api_client):
    """A broken database shows up in components, not as a 500."""
    client, _ = api_client
    with app.state.user_store.engine.connect() as conn:
        conn.execute(text("DROP TABLE users"))
        conn.commit()
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert "X-Request-ID" in resp.headers
