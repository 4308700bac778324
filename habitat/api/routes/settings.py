"""
habitat.api.routes.settings — Scoring settings administration
==============================================================

Admin-only.  Writes reload this process's settings cache at once; other
processes pick the change up through ``NOTIFY settings_changed``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from habitat import errors
from habitat.api.deps import get_cache, get_current_admin, get_engine
from habitat.database.engine import run_db
from habitat.engine.cache import ConfigCache
from habitat.services import settings_service

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)

_MISSING = object()


class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


@router.get("/settings")
async def list_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"settings": await run_db(settings_service.get_all_settings, engine)}


@router.get("/settings/{key}")
async def get_setting(
    key: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    value = await run_db(settings_service.get_setting_value, engine, key, _MISSING)
    if value is _MISSING:
        raise errors.NotFoundError(f"Setting {key!r} not found", code=errors.SETTING_NOT_FOUND)
    return {"key": key, "value": value}


@router.put("/settings")
async def update_settings(
    body: list[SettingUpdate],
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
):
    items = [
        {
            "key": s.key,
            "value": s.value,
            **({"category": s.category} if s.category else {}),
            **({"description": s.description} if s.description else {}),
        }
        for s in body
    ]
    count = await run_db(settings_service.bulk_upsert, engine, items, cache=cache)
    logger.info("Admin %s updated %d setting(s)", admin.get("sub"), count)
    return {"updated": count}
