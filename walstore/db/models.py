"""Database model helpers — query builders for the settings schema."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from walstore.db.connection import Database

logger = logging.getLogger(__name__)


@dataclass
class Setting:
    key: str
    value: Any
    updated_at: str | None = None


@dataclass
class SettingChange:
    id: int
    key: str
    old_value: Any
    new_value: Any
    changed_at: str | None = None


def _loads(raw: str | None) -> Any:
    return json.loads(raw) if raw is not None else None


class SettingsRepository:
    """Database operations for application settings."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, key: str) -> Setting | None:
        row = self.db.execute_one(
            "SELECT key, value, updated_at FROM settings WHERE key = ?", (key,)
        )
        if row:
            return Setting(
                key=row["key"], value=json.loads(row["value"]), updated_at=row["updated_at"]
            )
        return None

    def set(self, key: str, value: Any) -> None:
        self.db.execute_write(
            """INSERT INTO settings (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = CURRENT_TIMESTAMP""",
            (key, json.dumps(value)),
        )

    def delete(self, key: str) -> bool:
        return self.db.execute_write("DELETE FROM settings WHERE key = ?", (key,)) > 0

    def get_all(self) -> dict[str, Any]:
        rows = self.db.execute("SELECT key, value FROM settings ORDER BY key")
        return {r["key"]: json.loads(r["value"]) for r in rows}

    def set_many(self, values: dict[str, Any]) -> int:
        """Write several settings atomically."""
        return self.db.execute_many(
            """INSERT INTO settings (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = CURRENT_TIMESTAMP""",
            [(k, json.dumps(v)) for k, v in values.items()],
        )

    def history(self, key: str, limit: int = 50) -> list[SettingChange]:
        rows = self.db.execute(
            """SELECT id, key, old_value, new_value, changed_at FROM settings_history
               WHERE key = ? ORDER BY id DESC LIMIT ?""",
            (key, limit),
        )
        return [
            SettingChange(
                id=r["id"],
                key=r["key"],
                old_value=_loads(r["old_value"]),
                new_value=_loads(r["new_value"]),
                changed_at=r["changed_at"],
            )
            for r in rows
        ]
