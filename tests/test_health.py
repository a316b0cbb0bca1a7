"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 with status, version, environment and components
  - no authentication required
  - cache reported as "disabled" when turned off
  - every response carries an X-Request-ID (echoed when the caller sends one)
"""

from __future__ import annotations


def test_health_returns_200_with_components(api):
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"]
    assert data["environment"] == "test"
    assert data["components"]["app"]["status"] == "ok"
    assert data["components"]["database"]["status"] == "ok"


def test_health_reports_disabled_cache(api):
    assert api.client.get("/api/v1/health").json()["components"]["cache"]["status"] == "disabled"


def test_health_no_auth_required(api):
    resp = api.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_request_id_is_generated(api):
    resp = api.client.get("/api/v1/health")
    assert len(resp.headers["X-Request-ID"]) == 32


def test_request_id_is_echoed(api):
    resp = api.client.get("/api/v1/health", headers={"X-Request-ID": "trace-me-123"})
    assert resp.headers["X-Request-ID"] == "trace-me-123"


def test_error_responses_carry_request_id(api):
    resp = api.client.get("/api/v1/profiles/me", headers={"X-Request-ID": "err-1"})
    assert resp.status_code == 401
    assert resp.headers["X-Request-ID"] == "err-1"
