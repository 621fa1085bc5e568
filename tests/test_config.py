"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import yaml

from walstore.config import (
    REPLICATION_ENV_VAR,
    AppConfig,
    DatabaseConfig,
    ServerConfig,
    load_config,
    replication_detected,
)


class TestDefaults:
    def test_database_defaults(self):
        config = DatabaseConfig()
        assert config.dsn.endswith("walstore.db")
        assert config.max_open == 25
        assert config.max_idle == 25
        assert config.conn_max_idle_seconds == 300
        assert config.conn_max_lifetime_seconds == 7200
        assert config.busy_timeout_ms == 5000
        assert config.replication is False

    def test_server_defaults(self):
        config = ServerConfig()
        assert config.host == "localhost"
        assert config.port == 4444
        assert config.log_json is False

    def test_app_defaults(self):
        config = AppConfig()
        assert config.environment == "development"
        assert config.sentry_dsn == ""


class TestEnvOverrides:
    def test_database_env(self, monkeypatch):
        monkeypatch.setenv("WALSTORE_DB_MAX_OPEN", "7")
        monkeypatch.setenv("WALSTORE_DB_DSN", "/tmp/other.db")
        config = DatabaseConfig()
        assert config.max_open == 7
        assert config.dsn == "/tmp/other.db"

    def test_server_env(self, monkeypatch):
        monkeypatch.setenv("WALSTORE_SERVER_PORT", "9000")
        monkeypatch.setenv("WALSTORE_SERVER_LOG_JSON", "true")
        config = ServerConfig()
        assert config.port == 9000
        assert config.log_json is True


class TestYaml:
    def test_from_yaml(self, tmp_path: Path):
        path = tmp_path / "app.yml"
        path.write_text(
            yaml.safe_dump(
                {
                    "environment": "production",
                    "database": {"dsn": "/srv/data.db", "busy_timeout_ms": 100},
                    "server": {"port": 8080},
                }
            )
        )
        config = AppConfig.from_yaml(path)
        assert config.environment == "production"
        assert config.database.dsn == "/srv/data.db"
        assert config.database.busy_timeout_ms == 100
        assert config.server.port == 8080

    def test_missing_yaml_uses_defaults(self, tmp_path: Path):
        config = AppConfig.from_yaml(tmp_path / "absent.yml")
        assert config.server.port == 4444

    def test_empty_yaml(self, tmp_path: Path):
        path = tmp_path / "app.yml"
        path.write_text("")
        assert AppConfig.from_yaml(path).environment == "development"


class TestReplication:
    def test_detected(self):
        assert replication_detected({REPLICATION_ENV_VAR: "key"}) is True

    def test_not_detected(self):
        assert replication_detected({}) is False
        assert replication_detected({REPLICATION_ENV_VAR: ""}) is False

    def test_load_config_sets_flag(self, tmp_path, monkeypatch):
        monkeypatch.setenv(REPLICATION_ENV_VAR, "secret")
        config = load_config(tmp_path / "absent.yml")
        assert config.database.replication is True

    def test_load_config_without_agent(self, tmp_path, monkeypatch):
        monkeypatch.delenv(REPLICATION_ENV_VAR, raising=False)
        config = load_config(tmp_path / "absent.yml")
        assert config.database.replication is False
