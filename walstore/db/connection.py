"""Database facade — owns the connection pool for the process lifetime."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Generator

from walstore.config import AppConfig, DatabaseConfig
from walstore.db.errors import CloseError
from walstore.db.migrations import (
    MigrationResult,
    MigrationScript,
    applied_migrations,
    load_bundled_migrations,
    migrate,
    migration_status,
)
from walstore.db.pool import ConnectionPool, PoolConfig, open_pool

logger = logging.getLogger(__name__)


def pool_config_from_settings(settings: DatabaseConfig) -> PoolConfig:
    """Translate the settings model into the pool's fixed configuration."""
    return PoolConfig(
        max_open=settings.max_open,
        max_idle=settings.max_idle,
        conn_max_idle_time=timedelta(seconds=settings.conn_max_idle_seconds),
        conn_max_lifetime=timedelta(seconds=settings.conn_max_lifetime_seconds),
        busy_timeout_ms=settings.busy_timeout_ms,
        disable_autocheckpoint=settings.replication,
    )


def _is_insert(sql: str) -> bool:
    return sql.lstrip().upper().startswith(("INSERT", "REPLACE"))


class Database:
    """Pooled SQLite database, migrated to the bundled schema on open.

    Queries may run concurrently from any thread; each one borrows a pooled
    connection and gives it back before returning.
    """

    def __init__(self, pool: ConnectionPool, migrations: Iterable[MigrationScript] = ()):
        self._pool = pool
        self._migrations = tuple(migrations)

    @classmethod
    def open(
        cls,
        dsn: str,
        pool_config: PoolConfig | None = None,
        migrations: Iterable[MigrationScript] | None = None,
    ) -> Database:
        """Open the pool and bring the schema up to date.

        Raises OpenError, MigrationReadError or MigrationApplyError; on a
        migration failure the pool is closed before the error propagates.
        """
        scripts = tuple(load_bundled_migrations() if migrations is None else migrations)
        pool = open_pool(dsn, pool_config)
        try:
            migrate(pool, scripts)
        except BaseException:
            try:
                pool.close()
            except CloseError as exc:
                logger.warning("Closing pool after failed migration: %s", exc)
            raise
        return cls(pool, scripts)

    @classmethod
    def from_config(cls, config: AppConfig) -> Database:
        return cls.open(config.database.dsn, pool_config_from_settings(config.database))

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def closed(self) -> bool:
        return self._pool.closed

    def close(self) -> None:
        """Release every pooled connection. Calling it again is a no-op."""
        if self._pool.closed:
            return
        self._pool.close()
        logger.info("Database closed")

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a pooled connection (autocommit mode)."""
        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection inside a write transaction.

        Commits when the block exits normally, rolls back on an exception.
        """
        with self._pool.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def execute(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a query and return results as list of dicts."""
        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            if cursor.description:
                columns = [d[0] for d in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            return []

    def execute_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Execute a query and return the first row as a dict, or None."""
        results = self.execute(sql, params)
        return results[0] if results else None

    def execute_write(self, sql: str, params: tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE.

        Returns the new rowid for an INSERT or REPLACE that wrote a row, else
        the number of affected rows.
        """
        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            # lastrowid survives on a reused connection until the next insert
            if cursor.rowcount > 0 and _is_insert(sql):
                return cursor.lastrowid
            return cursor.rowcount

    def execute_many(self, sql: str, params_list: list[tuple]) -> int:
        """Execute a batch of writes in one transaction."""
        with self.transaction() as conn:
            cursor = conn.executemany(sql, params_list)
            return cursor.rowcount

    def applied_migrations(self) -> list[str]:
        return applied_migrations(self._pool)

    def migration_status(self) -> list[MigrationResult]:
        return migration_status(self._pool, self._migrations)

    def stats(self) -> dict[str, Any]:
        return self._pool.stats()


# Module-level singleton
_db: Database | None = None


def get_db() -> Database:
    """Get the global database instance."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db


def init_db(config: AppConfig) -> Database:
    """Open the global database instance and run migrations."""
    global _db
    _db = Database.from_config(config)
    return _db


def close_db() -> None:
    """Close the global database instance, if one was opened."""
    global _db
    db, _db = _db, None
    if db is not None:
        db.close()
