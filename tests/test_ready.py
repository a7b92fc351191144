"""
Tests for /ready and /health endpoints.
"""
from __future__ import annotations

from unittest.mock import patch


def test_ready_ok(app_client):
    """Test /ready returns ok when all services are healthy."""
    _app, client = app_client

    with patch("server._ping_redis", return_value=True):
        res = client.get("/ready")
        assert res.status_code == 200

        body = res.get_json()
        assert body["status"] == "ok"
        assert body["checks"] == {"db": "ok", "redis": "ok"}


def test_ready_redis_down(app_client):
    """Test /ready returns degraded when Redis is down."""
    _app, client = app_client

    with patch("server._ping_redis", return_value=False):
        res = client.get("/ready")
        assert res.status_code == 503
        body = res.get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["redis"] == "error"


def test_health_and_security_headers(app_client):
    _app, client = app_client

    res = client.get("/health")
    assert res.status_code == 200
    assert res.get_json()["ok"] is True
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "DENY"
    assert res.headers["X-Request-ID"]


def test_unknown_endpoint_is_json_404(app_client):
    _app, client = app_client

    res = client.get("/nope")
    assert res.status_code == 404
    assert res.get_json()["error"]["code"] == "NOT_FOUND"
