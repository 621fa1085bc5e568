"""Shared fixtures for temporary database files, pools and facades."""

from __future__ import annotations

import pytest

from walstore.config import AppConfig, DatabaseConfig
from walstore.db.connection import Database
from walstore.db.pool import PoolConfig, open_pool


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def pool(db_path):
    """An open pool on a fresh file, closed after the test."""
    p = open_pool(str(db_path), PoolConfig(max_open=5, busy_timeout_ms=2000))
    yield p
    p.close()


@pytest.fixture
def db(db_path):
    """A migrated database facade on a fresh file."""
    database = Database.open(str(db_path))
    yield database
    database.close()


@pytest.fixture
def app_config(db_path) -> AppConfig:
    config = AppConfig()
    config.database = DatabaseConfig(dsn=str(db_path), busy_timeout_ms=2000)
    return config
