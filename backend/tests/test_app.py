import pytest
from fastapi.testclient import TestClient
from sqlalchemy import DateTime
from sqlmodel import SQLModel

from portal import __version__
from portal.config import Settings
from portal.main import app
from portal.services import AnalyticsService

from conftest import auth_headers


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["version"] == __version__
    assert body["timestamp"]


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    assert client.get("/health").headers["X-Request-ID"]


def test_unknown_route_uses_the_envelope(client):
    r = client.get("/api/nowhere")
    assert r.status_code == 404
    assert r.json() == {"success": False, "message": "Route /api/nowhere not found"}


def test_unhandled_errors_become_500(admin, monkeypatch):
    def boom(self):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(AnalyticsService, "overview", boom)
    client = TestClient(app, raise_server_exceptions=False)
    r = client.get("/api/analytics/overview", headers=auth_headers(admin))
    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert body["message"] == "Server Error"
    assert "kaboom" in body["stack"]


def test_log_level_comes_from_settings(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert Settings().LOG_LEVEL == "DEBUG"
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(RuntimeError):
        Settings()


def test_timestamp_columns_store_naive_datetimes():
    columns = [col for table in SQLModel.metadata.sorted_tables for col in table.columns]
    assert not [col for col in columns if type(col.type).__name__ == "UTCDateTime"]
    stamps = [col for col in columns if isinstance(col.type, DateTime)]
    assert stamps
    for col in stamps:
        assert type(col.type) is DateTime, col
        assert col.type.timezone is False
