"""Tests for health, stats, error envelopes and configuration."""
import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError
from pymongo.errors import ServerSelectionTimeoutError

import main
from config import Settings
from main import create_app


class UnreachableAdmin:
    def command(self, name):
        raise ServerSelectionTimeoutError("no servers available")


class UnreachableClient:
    admin = UnreachableAdmin()

    def __getitem__(self, name):
        return None

    def close(self):
        pass


def test_root_lists_endpoints(client):
    body = client.get("/").json()
    assert body["version"] == "1.0.0"
    assert any("/api/inspections" in e for e in body["endpoints"])


def test_ping(client):
    assert client.get("/api/ping").json()["status"] == "ok"


def test_health_ok(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["environment"] == "test"
    assert body["uptime"] >= 0


def test_health_degraded_when_store_unreachable(client, store):
    store.client = UnreachableClient()
    resp = client.get("/api/health")
    assert resp.status_code == 503
    assert resp.json()["database"] == "disconnected"


def test_request_id_echoed(client):
    resp = client.get("/api/ping", headers={"X-Request-Id": "abc-123"})
    assert resp.headers["X-Request-Id"] == "abc-123"


def test_unknown_route(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Endpoint not found"}


def test_stats_summary(client, notification_payload, inspection_payload):
    first = client.post("/api/notifications", json=notification_payload).json()["data"]
    client.post("/api/notifications", json=notification_payload)
    client.patch(f"/api/notifications/{first['_id']}/read")
    client.post("/api/inspections", json=inspection_payload)
    client.post("/api/inspections", json={**inspection_payload, "repairsNeeded": "urgent: brakes"})
    client.post("/api/inspections", json={**inspection_payload, "urgencyLevel": "critical", "status": "reviewed"})

    resp = client.get("/api/stats")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["notifications"]["total"] == 2
    assert data["notifications"]["unread"] == 1
    assert len(data["notifications"]["recent"]) == 2
    assert data["inspections"]["total"] == 3
    assert data["inspections"]["pending"] == 2
    assert data["inspections"]["urgent"] == 2
    assert len(data["inspections"]["recent"]) == 3
    assert data["lastUpdated"]


def test_stats_recent_capped_at_five(client, notification_payload):
    for _ in range(8):
        client.post("/api/notifications", json=notification_payload)
    data = client.get("/api/stats").json()["data"]
    assert data["notifications"]["total"] == 8
    assert len(data["notifications"]["recent"]) == 5


def test_stats_fails_whole_request_on_store_error(client, store, monkeypatch):
    original = store.count_documents

    def flaky(collection_name, filter_dict=None):
        if collection_name == "inspections":
            raise ServerSelectionTimeoutError("inspections unavailable")
        return original(collection_name, filter_dict)

    monkeypatch.setattr(store, "count_documents", flaky)
    resp = client.get("/api/stats")
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Database error"}


def test_unhandled_error_detail_outside_production(app, store, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(store, "get_documents", broken)
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.get("/api/notifications/list")
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal server error", "message": "boom"}


def test_unhandled_error_hidden_in_production(settings, store, monkeypatch):
    prod = settings.model_copy(update={"ENVIRONMENT": "production"})
    app = create_app(prod, store)

    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(store, "get_documents", broken)
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.get("/api/notifications/list")
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal server error"}


def test_startup_fails_when_store_unreachable(settings, store):
    store.client = UnreachableClient()
    app = create_app(settings, store)
    with pytest.raises(Exception):
        with TestClient(app):
            pass


def test_settings_require_connection_string(monkeypatch):
    monkeypatch.delenv("MONGODB_URI", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_settings_accept_database_url_alias(monkeypatch):
    monkeypatch.delenv("MONGODB_URI", raising=False)
    monkeypatch.setenv("DATABASE_URL", "mongodb://db.internal:27017")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
    settings = Settings(_env_file=None)
    assert settings.MONGODB_URI == "mongodb://db.internal:27017"
    assert settings.PORT == 3000
    assert settings.cors_origins == ["https://a.example", "https://b.example"]
    assert settings.is_production is False


def test_run_exits_without_connection_string(monkeypatch):
    monkeypatch.delenv("MONGODB_URI", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(main, "get_settings", lambda: Settings(_env_file=None))
    with pytest.raises(SystemExit) as exc_info:
        main.run()
    assert exc_info.value.code == 1


def test_store_closed_on_shutdown(app, store, monkeypatch):
    closed = []
    original_close = store.client.close
    monkeypatch.setattr(store.client, "close", lambda: closed.append(True) or original_close())

    with TestClient(app) as client:
        assert client.get("/api/health").status_code == 200
        assert store.db is not None

    assert closed == [True]
    assert store.db is None


def test_settings_reject_empty_connection_string(monkeypatch):
    monkeypatch.setenv("MONGODB_URI", "")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
