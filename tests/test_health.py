"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and database fields
  - No authentication required
  - Database failure reports 503
"""

from __future__ import annotations

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version, and database."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert "version" in data


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_reports_database_outage(api_client):
    store = api_client.app.state.user_store
    broken = MagicMock()
    broken.engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
    api_client.app.state.user_store = broken
    try:
        resp = api_client.get("/api/v1/health")
    finally:
        api_client.app.state.user_store = store
    assert resp.status_code == 503
    assert resp.json()["database"] == "unavailable"


def test_store_outage_maps_to_503(api_client):
    """An OperationalError escaping a route becomes a store_unavailable envelope."""
    store = api_client.app.state.kv
    broken = MagicMock()
    broken.put.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
    api_client.app.state.kv = broken
    try:
        resp = api_client.post("/api/v1/auth/login/challenge")
    finally:
        api_client.app.state.kv = store
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "store_unavailable"
