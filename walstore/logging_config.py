"""Logging setup: leveled text lines or one JSON object per line."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="seconds")


class TextFormatter(logging.Formatter):
    """``level="INFO" time="..." logger="..." message="..."`` with the traceback appended."""

    def format(self, record: logging.LogRecord) -> str:
        line = "level={} time={} logger={} message={}".format(
            json.dumps(record.levelname),
            json.dumps(_timestamp(record)),
            json.dumps(record.name),
            json.dumps(record.getMessage()),
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "time": _timestamp(record),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["trace"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(
    level: str = "info", json_output: bool = False, stream: TextIO | None = None
) -> None:
    """Install a single root handler at ``level``."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
