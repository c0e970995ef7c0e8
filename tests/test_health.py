"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against the test database
  - No session required (exempt from the API session gate)
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any session cookie."""
    resp = api_client.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_host_rejected(api_client):
    """TrustedHostMiddleware rejects Host headers outside ALLOWED_HOSTS."""
    resp = api_client.client.get("/api/v1/health", headers={"Host": "evil.example"})
    assert resp.status_code == 400
