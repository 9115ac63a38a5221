"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports the durable store
  - No sign-in required
"""

from __future__ import annotations

from unittest.mock import patch

from api.main import VERSION


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == VERSION
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_database_error(api_client):
    """A failing durable store shows up in components without failing the endpoint."""
    store = api_client.app.state.durable_store
    with patch.object(store, "ping", return_value=False):
        data = api_client.get("/api/v1/health").json()
    assert data["components"]["database"] == "error"


def test_health_no_sign_in_required(api_client, identity):
    """Health never builds an identity client."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    assert identity.clients == []


def test_untrusted_host_rejected(api_client):
    resp = api_client.get("/api/v1/health", headers={"host": "evil.example.com"})
    assert resp.status_code == 400
