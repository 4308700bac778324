"""
habitat.api.routes.leaderboard — Leaderboards, karma and history
=================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from habitat import constants
from habitat.api.deps import get_config, get_current_user_id, get_engine, get_rules
from habitat.config import HabitatConfig
from habitat.database.engine import run_db
from habitat.engine.karma import KarmaRules
from habitat.services import karma_service

router = APIRouter(tags=["leaderboard"])


# ---------------------------------------------------------------------------
# GET /leaderboard/*
# ---------------------------------------------------------------------------
@router.get("/leaderboard/daily")
async def daily_leaderboard(
    limit: int | None = Query(None, ge=1, le=constants.MAX_LEADERBOARD_LIMIT),
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
    rules: KarmaRules = Depends(get_rules),
):
    return await run_db(
        karma_service.get_daily_leaderboard, engine,
        user_id=user_id, limit=limit or cfg.default_leaderboard_limit,
        rules=rules, tz=cfg.tz,
    )


@router.get("/leaderboard/total")
async def total_leaderboard(
    limit: int | None = Query(None, ge=1, le=constants.MAX_LEADERBOARD_LIMIT),
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
):
    return await run_db(
        karma_service.get_total_leaderboard, engine,
        user_id=user_id, limit=limit or cfg.default_leaderboard_limit,
    )


@router.get("/leaderboard/category/{category_id}")
async def category_leaderboard(
    category_id: int,
    limit: int | None = Query(None, ge=1, le=constants.MAX_LEADERBOARD_LIMIT),
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
    rules: KarmaRules = Depends(get_rules),
):
    return await run_db(
        karma_service.get_category_leaderboard, engine, category_id,
        user_id=user_id, limit=limit or cfg.default_leaderboard_limit, rules=rules,
    )


# ---------------------------------------------------------------------------
# GET /users/{id}/*
# ---------------------------------------------------------------------------
@router.get("/users/{target_id}/karma")
async def user_karma(
    target_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
    rules: KarmaRules = Depends(get_rules),
):
    return await run_db(
        karma_service.get_user_karma, engine, target_id, rules=rules, tz=cfg.tz,
    )


@router.get("/users/{target_id}/history")
async def user_history(
    target_id: int,
    days: int | None = Query(None, ge=1, le=constants.MAX_HISTORY_DAYS),
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
    rules: KarmaRules = Depends(get_rules),
):
    return await run_db(
        karma_service.get_user_history, engine, target_id,
        days=days or cfg.history_default_days, rules=rules, tz=cfg.tz,
    )
