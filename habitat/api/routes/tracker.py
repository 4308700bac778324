"""
habitat.api.routes.tracker — Today's habits and completion stats
=================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from habitat import constants
from habitat.api.deps import get_config, get_current_user_id, get_engine
from habitat.config import HabitatConfig
from habitat.database.engine import run_db
from habitat.database.models import Slot
from habitat.services import tracker_service

router = APIRouter(prefix="/tracker", tags=["tracker"])


@router.get("/today")
async def today(
    slot: Slot | None = None,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
):
    return await run_db(
        tracker_service.get_today_summary, engine, user_id, slot=slot, tz=cfg.tz,
    )


@router.get("/stats")
async def stats(
    habit_id: int | None = None,
    days: int = Query(constants.STATS_DEFAULT_DAYS, ge=1, le=constants.MAX_HISTORY_DAYS),
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
):
    return await run_db(
        tracker_service.get_habit_stats, engine, user_id,
        habit_id=habit_id, days=days, tz=cfg.tz,
    )
