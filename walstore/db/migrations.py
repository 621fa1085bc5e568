"""Versioned schema migrations.

Migration scripts ship as package data in ``walstore/db/schema/*.sql`` and
are applied in lexicographic order of their file names. Once a script runs,
its name is stored in the ``migrations`` table so it is never re-executed.
Each script runs in its own transaction together with that bookkeeping insert,
so a crash mid-script leaves nothing behind and a restart resumes at the first
unrecorded script.

Ordering is strictly by name. A script added later with a name that sorts
before already-applied ones is still applied (after them in time); a warning
is logged when that happens. Name new files so they sort last, e.g. with a
zero-padded sequence number or a timestamp prefix.

Scripts must not contain their own BEGIN/COMMIT statements.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path

from walstore.db.errors import MigrationApplyError, MigrationError, MigrationReadError
from walstore.db.pool import ConnectionPool

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "walstore.db"
MIGRATIONS_DIR = "schema"

BOOKKEEPING_SQL = "CREATE TABLE IF NOT EXISTS migrations (name TEXT PRIMARY KEY)"


class MigrationStatus(str, Enum):
    PENDING = "pending"
    ALREADY_APPLIED = "already_applied"
    APPLIED = "applied"


@dataclass(frozen=True)
class MigrationScript:
    name: str
    body: str


@dataclass(frozen=True)
class MigrationResult:
    name: str
    status: MigrationStatus


class MigrationSource:
    """Immutable set of migration scripts, iterated in apply order.

    Python string order is code point order, which matches byte-wise order of
    the UTF-8 encoded names.
    """

    def __init__(self, scripts: Iterable[MigrationScript]):
        ordered = sorted(scripts, key=lambda s: s.name)
        for prev, cur in zip(ordered, ordered[1:]):
            if prev.name == cur.name:
                raise MigrationReadError(cur.name, "duplicate migration name")
        self._scripts: tuple[MigrationScript, ...] = tuple(ordered)

    def __iter__(self) -> Iterator[MigrationScript]:
        return iter(self._scripts)

    def __len__(self) -> int:
        return len(self._scripts)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._scripts]


def _read_script(entry: Traversable | Path) -> MigrationScript:
    try:
        body = entry.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MigrationReadError(entry.name, str(exc)) from exc
    return MigrationScript(name=entry.name, body=body)


def load_bundled_migrations() -> MigrationSource:
    """Load the SQL scripts shipped inside the package."""
    try:
        root = resources.files(MIGRATIONS_PACKAGE).joinpath(MIGRATIONS_DIR)
        entries = [e for e in root.iterdir() if e.is_file() and e.name.endswith(".sql")]
    except (OSError, ModuleNotFoundError) as exc:
        raise MigrationReadError(MIGRATIONS_DIR, str(exc)) from exc
    return MigrationSource(_read_script(e) for e in entries)


def load_migrations_from_dir(path: Path | str) -> MigrationSource:
    """Load ``*.sql`` scripts from a directory on disk."""
    directory = Path(path)
    if not directory.is_dir():
        raise MigrationReadError(str(directory), "not a directory")
    return MigrationSource(_read_script(p) for p in directory.glob("*.sql") if p.is_file())


def split_statements(body: str) -> list[str]:
    """Split a SQL script into complete statements.

    Splits on ';' and re-joins fragments until SQLite reports a complete
    statement, so semicolons inside string literals and trigger bodies are kept.
    """
    statements: list[str] = []
    parts = body.split(";")
    buf = ""
    for i, part in enumerate(parts):
        buf += part
        if i < len(parts) - 1:
            buf += ";"
        if sqlite3.complete_statement(buf):
            if buf.strip(" \t\r\n;"):
                statements.append(buf.strip())
            buf = ""
    if buf.strip():
        statements.append(buf.strip())
    return statements


def _as_source(scripts: Iterable[MigrationScript]) -> MigrationSource:
    return scripts if isinstance(scripts, MigrationSource) else MigrationSource(scripts)


def _recorded_names(conn: sqlite3.Connection) -> set[str]:
    exists = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'migrations'"
    ).fetchone()
    if exists is None:
        return set()
    return {row[0] for row in conn.execute("SELECT name FROM migrations")}


def applied_migrations(pool: ConnectionPool) -> list[str]:
    """Names recorded in the ``migrations`` table, in apply order."""
    with pool.connection() as conn:
        return sorted(_recorded_names(conn))


def migration_status(
    pool: ConnectionPool, scripts: Iterable[MigrationScript]
) -> list[MigrationResult]:
    """Report each script as APPLIED or PENDING without changing anything."""
    with pool.connection() as conn:
        recorded = _recorded_names(conn)
    return [
        MigrationResult(
            s.name,
            MigrationStatus.APPLIED if s.name in recorded else MigrationStatus.PENDING,
        )
        for s in _as_source(scripts)
    ]


def migrate(pool: ConnectionPool, scripts: Iterable[MigrationScript]) -> list[MigrationResult]:
    """Apply every unrecorded script, in name order, each in its own transaction.

    Stops at the first failure with MigrationApplyError naming the script;
    scripts after it are not attempted.
    """
    source = _as_source(scripts)
    results: list[MigrationResult] = []

    with pool.connection() as conn:
        # Ensure the 'migrations' table exists so we don't duplicate migrations.
        try:
            conn.execute(BOOKKEEPING_SQL)
        except sqlite3.Error as exc:
            raise MigrationError(f"cannot create migrations table: {exc}") from exc

        recorded = _recorded_names(conn)
        latest = max(recorded) if recorded else None

        for script in source:
            status = _migrate_script(conn, script, latest)
            results.append(MigrationResult(script.name, status))

    applied = sum(1 for r in results if r.status is MigrationStatus.APPLIED)
    logger.info(
        "Migrations up to date: %d applied, %d already present", applied, len(results) - applied
    )
    return results


def _migrate_script(
    conn: sqlite3.Connection, script: MigrationScript, latest: str | None
) -> MigrationStatus:
    """Run one script and record it, all inside a single transaction."""
    try:
        # IMMEDIATE takes the write lock up front; a concurrent migrator waits
        # for the busy timeout and then sees this script as recorded.
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise MigrationApplyError(script.name, f"begin: {exc}") from exc

    try:
        (count,) = conn.execute(
            "SELECT COUNT(*) FROM migrations WHERE name = ?", (script.name,)
        ).fetchone()
        if count:
            conn.rollback()
            return MigrationStatus.ALREADY_APPLIED

        if latest is not None and script.name < latest:
            logger.warning(
                "Applying migration %s out of order: %s was already applied",
                script.name,
                latest,
            )

        for statement in split_statements(script.body):
            conn.execute(statement)
        conn.execute("INSERT INTO migrations (name) VALUES (?)", (script.name,))
        conn.commit()
    except sqlite3.Error as exc:
        try:
            conn.rollback()
        except sqlite3.Error as rollback_exc:
            logger.error("Rollback of migration %s failed: %s", script.name, rollback_exc)
        raise MigrationApplyError(script.name, str(exc)) from exc

    logger.info("migration success: %s", script.name)
    return MigrationStatus.APPLIED
