"""Application settings from environment variables and an optional YAML file."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings


def _repo_root() -> Path:
    """Find the repository root (directory containing pyproject.toml)."""
    current = Path(__file__).resolve().parent.parent
    if (current / "pyproject.toml").exists():
        return current
    return Path.cwd()


REPO_ROOT = _repo_root()

# Set by the Litestream sidecar when WAL replication is active
REPLICATION_ENV_VAR = "LITESTREAM_ACCESS_KEY"


class DatabaseConfig(BaseSettings):
    dsn: str = str(REPO_ROOT / "data" / "walstore.db")
    max_open: int = 25
    max_idle: int = 25
    conn_max_idle_seconds: float = 5 * 60
    conn_max_lifetime_seconds: float = 2 * 60 * 60
    busy_timeout_ms: int = 5000
    replication: bool = False

    model_config = {"env_prefix": "WALSTORE_DB_"}


class ServerConfig(BaseSettings):
    host: str = "localhost"
    port: int = 4444
    log_level: str = "info"
    log_json: bool = False

    model_config = {"env_prefix": "WALSTORE_SERVER_"}


class AppConfig(BaseSettings):
    """Top-level application configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # Environment & Sentry
    environment: str = "development"
    sentry_dsn: str = ""

    model_config = {"env_prefix": "WALSTORE_"}

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> AppConfig:
        """Load config from YAML file, with env var overrides."""
        if path is None:
            path = REPO_ROOT / "config" / "app.yml"

        values: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                values = yaml.safe_load(f) or {}

        return cls(**values)


def replication_detected(environ: Mapping[str, str] | None = None) -> bool:
    """Whether an external replication agent is configured for this process."""
    if environ is None:
        environ = os.environ
    return bool(environ.get(REPLICATION_ENV_VAR, ""))


def load_config(path: Path | None = None) -> AppConfig:
    """Load the app config and switch on replication mode if the agent is present."""
    config = AppConfig.from_yaml(path)
    if replication_detected():
        config.database.replication = True
    return config
