from __future__ import annotations

import pytest

from cache_layer import cache_clear


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client")
    monkeypatch.setenv("AUTH_ALLOW_TEST_TOKENS", "1")
    monkeypatch.setenv("INTERNAL_CRON_TOKEN", "cron-secret")
    monkeypatch.setenv("APP_TIMEZONE", "UTC")
    monkeypatch.setenv("RATE_LIMIT_DEFAULT", "10000 per minute")
    monkeypatch.setenv("RATE_LIMIT_GLOBAL", "10000 per minute")
    monkeypatch.setenv("RATE_LIMIT_LOGIN", "10000 per minute")
    monkeypatch.setenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "0")
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("ENABLE_SCHEDULER", raising=False)
    cache_clear()

    from server import create_app

    app = create_app()
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield app, client

    cache_clear()
