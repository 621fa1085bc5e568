"""Settings API routes — JSON values stored in the settings table."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from walstore.db.models import SettingsRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/settings")


class SettingUpdate(BaseModel):
    value: Any


def _repo(request: Request) -> SettingsRepository:
    return SettingsRepository(request.app.state.db)


@router.get("")
def list_settings(request: Request) -> dict[str, Any]:
    return _repo(request).get_all()


@router.put("")
def update_settings(request: Request, body: dict[str, Any]) -> dict:
    count = _repo(request).set_many(body)
    return {"ok": True, "updated": count}


@router.get("/{key}")
def get_setting(request: Request, key: str) -> dict:
    setting = _repo(request).get(key)
    if setting is None:
        raise HTTPException(status_code=404, detail=f"Setting {key!r} not found")
    return {"key": setting.key, "value": setting.value, "updated_at": setting.updated_at}


@router.put("/{key}")
def put_setting(request: Request, key: str, body: SettingUpdate) -> dict:
    _repo(request).set(key, body.value)
    logger.info("Setting updated: %s", key)
    return {"ok": True}


@router.delete("/{key}")
def delete_setting(request: Request, key: str) -> dict:
    if not _repo(request).delete(key):
        raise HTTPException(status_code=404, detail=f"Setting {key!r} not found")
    logger.info("Setting deleted: %s", key)
    return {"ok": True}


@router.get("/{key}/history")
def setting_history(request: Request, key: str, limit: int = 50) -> list[dict]:
    return [
        {
            "old_value": c.old_value,
            "new_value": c.new_value,
            "changed_at": c.changed_at,
        }
        for c in _repo(request).history(key, limit)
    ]
