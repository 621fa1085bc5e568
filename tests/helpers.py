"""Test helpers shared across modules."""

from __future__ import annotations

from walstore.db.migrations import MigrationScript


def scripts(**bodies: str) -> list[MigrationScript]:
    """Build migration scripts from keyword args; ``_0001_init`` -> ``0001_init.sql``."""
    return [
        MigrationScript(name=f"{key.lstrip('_')}.sql", body=body) for key, body in bodies.items()
    ]


def table_columns(conn, table: str) -> list[str]:
    return [row["name"] for row in conn.execute(f"PRAGMA table_info({table})")]


def table_exists(conn, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).fetchone()
    return row is not None
