"""Database layer — pooled SQLite with versioned schema migrations."""

from walstore.db.connection import Database, close_db, get_db, init_db
from walstore.db.errors import (
    CloseError,
    DatabaseError,
    MigrationApplyError,
    MigrationError,
    MigrationReadError,
    OpenError,
    PoolClosedError,
    PoolTimeoutError,
)
from walstore.db.migrations import MigrationScript, MigrationSource, migrate
from walstore.db.pool import ConnectionPool, PoolConfig, open_pool

__all__ = [
    "CloseError",
    "ConnectionPool",
    "Database",
    "DatabaseError",
    "MigrationApplyError",
    "MigrationError",
    "MigrationReadError",
    "MigrationScript",
    "MigrationSource",
    "OpenError",
    "PoolClosedError",
    "PoolConfig",
    "PoolTimeoutError",
    "close_db",
    "get_db",
    "init_db",
    "migrate",
    "open_pool",
]
