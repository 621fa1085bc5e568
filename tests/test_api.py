"""Tests for the HTTP layer: app factory, lifecycle and routes."""

from __future__ import annotations

import sqlite3

import pytest
from fastapi.testclient import TestClient

from walstore import main
from walstore.db.errors import MigrationApplyError, OpenError
from walstore.main import create_app


@pytest.fixture
def app(app_config):
    return create_app(app_config)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


class TestLifecycle:
    def test_database_opened_and_migrated(self, app):
        assert app.state.db.applied_migrations() == [
            "0001_settings.sql",
            "0002_settings_history.sql",
        ]
        app.state.db.close()

    def test_shutdown_closes_database(self, app):
        with TestClient(app) as c:
            assert c.get("/api/health").status_code == 200
        assert app.state.db.closed

    def test_open_error_aborts_startup(self, app_config, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        app_config.database.dsn = str(blocker / "app.db")
        with pytest.raises(OpenError):
            create_app(app_config)

    def test_corrupt_schema_aborts_startup(self, app_config, db_path):
        # A pre-existing table with the same name makes 0001 fail
        conn = sqlite3.connect(str(db_path))
        conn.execute("CREATE TABLE settings (k TEXT)")
        conn.commit()
        conn.close()

        with pytest.raises(MigrationApplyError) as exc_info:
            create_app(app_config)
        assert exc_info.value.name == "0001_settings.sql"

    def test_uses_given_database(self, app_config, db):
        app = create_app(app_config, db=db)
        assert app.state.db is db

    def test_sentry_only_outside_development(self, app_config, monkeypatch):
        calls = []
        monkeypatch.setattr(main.sentry_sdk, "init", lambda *a, **kw: calls.append((a, kw)))

        create_app(app_config).state.db.close()
        assert calls == []

        app_config.environment = "production"
        app_config.sentry_dsn = "https://key@sentry.example.invalid/1"
        create_app(app_config).state.db.close()
        assert len(calls) == 1
        assert calls[0][1]["environment"] == "production"


class TestAdminRoutes:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["pool"]["max_open"] == 25
        assert body["pool"]["in_use"] == 0

    def test_migrations(self, client):
        resp = client.get("/api/migrations")
        assert resp.status_code == 200
        body = resp.json()
        assert body["applied"] == ["0001_settings.sql", "0002_settings_history.sql"]
        assert {m["status"] for m in body["migrations"]} == {"applied"}


class TestSettingsRoutes:
    def test_put_and_get(self, client):
        resp = client.put("/api/settings/theme", json={"value": {"mode": "dark"}})
        assert resp.status_code == 200

        resp = client.get("/api/settings/theme")
        assert resp.status_code == 200
        body = resp.json()
        assert body["key"] == "theme"
        assert body["value"] == {"mode": "dark"}

    def test_get_missing(self, client):
        assert client.get("/api/settings/missing").status_code == 404

    def test_list(self, client):
        client.put("/api/settings/b", json={"value": 2})
        client.put("/api/settings/a", json={"value": 1})
        assert client.get("/api/settings").json() == {"a": 1, "b": 2}

    def test_bulk_update(self, client):
        resp = client.put("/api/settings", json={"x": True, "y": "text"})
        assert resp.status_code == 200
        assert resp.json()["updated"] == 2
        assert client.get("/api/settings").json() == {"x": True, "y": "text"}

    def test_delete(self, client):
        client.put("/api/settings/gone", json={"value": 1})
        assert client.delete("/api/settings/gone").status_code == 200
        assert client.get("/api/settings/gone").status_code == 404
        assert client.delete("/api/settings/gone").status_code == 404

    def test_history(self, client):
        client.put("/api/settings/limit", json={"value": 1})
        client.put("/api/settings/limit", json={"value": 2})

        resp = client.get("/api/settings/limit/history")
        assert resp.status_code == 200
        assert [(c["old_value"], c["new_value"]) for c in resp.json()] == [(1, 2), (None, 1)]
