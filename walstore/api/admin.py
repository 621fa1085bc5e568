"""Admin API routes — health, migrations and pool stats."""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, HTTPException, Request

from walstore.db.connection import Database
from walstore.db.errors import DatabaseError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api")


def _db(request: Request) -> Database:
    return request.app.state.db


@router.get("/health")
def health(request: Request) -> dict:
    db = _db(request)
    try:
        db.execute_one("SELECT 1 AS ok")
    except (DatabaseError, sqlite3.Error) as e:
        logger.error("Health check failed: %s", e)
        raise HTTPException(status_code=503, detail="database unavailable")
    return {"status": "ok", "pool": db.stats()}


@router.get("/migrations")
def list_migrations(request: Request) -> dict:
    """Bundled migrations and whether each one is recorded as applied."""
    db = _db(request)
    return {
        "applied": db.applied_migrations(),
        "migrations": [
            {"name": m.name, "status": m.status.value} for m in db.migration_status()
        ],
    }
