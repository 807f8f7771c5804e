from __future__ import annotations

from typing import Iterable

import pytest
from fastapi.testclient import TestClient

from . import app as app_module


@pytest.fixture
def client(tmp_path, monkeypatch) -> Iterable[TestClient]:
    monkeypatch.setattr(app_module.settings, "db_path", tmp_path / "storytimeline.db")
    with TestClient(app_module.app, raise_server_exceptions=False) as test_client:
        yield test_client


def test_health_endpoint_returns_uptime_and_version(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "uptime_seconds" in data
    assert data["version"] == app_module.app.version
    assert "X-Request-ID" in response.headers


def test_health_ready_checks_event_store(client: TestClient) -> None:
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_health_ready_reports_store_failure(client: TestClient, monkeypatch) -> None:
    import sqlite3

    def broken_init_db(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(app_module, "init_db", broken_init_db)
    response = client.get("/health/ready")
    assert response.status_code == 503
    assert "unavailable" in response.json()["detail"]


def test_request_id_header_is_reused_from_client(client: TestClient) -> None:
    custom_request_id = "test-request-123"
    response = client.get("/health", headers={"X-Request-ID": custom_request_id})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == custom_request_id


def test_unhandled_exception_returns_request_id(client: TestClient) -> None:
    if not any(
        getattr(route, "path", None) == "/_test-error"
        for route in app_module.app.router.routes
    ):
        @app_module.app.get("/_test-error")
        async def _raise_error():  # pragma: no cover - used only for tests
            raise RuntimeError("boom")

    response = client.get("/_test-error")
    assert response.status_code == 500
    data = response.json()
    assert "request_id" in data
    assert data["detail"].startswith("Unexpected internal")
    assert response.headers["X-Request-ID"] == data["request_id"]
