"""
habitat.api.routes.feed — Trending atoms
=========================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from habitat import constants
from habitat.api.deps import get_current_user_id, get_engine
from habitat.database.engine import run_db
from habitat.services import feed_service

router = APIRouter(prefix="/feed", tags=["feed"])


@router.get("/trending")
async def trending_atoms(
    page: int = Query(1, ge=1),
    limit: int = Query(constants.DEFAULT_PAGE_SIZE, ge=1, le=constants.MAX_PAGE_SIZE),
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
):
    return await run_db(
        feed_service.get_trending_atoms, engine, user_id=user_id, page=page, limit=limit,
    )
