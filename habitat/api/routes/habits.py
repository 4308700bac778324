"""
habitat.api.routes.habits — Habit completion endpoint
======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from habitat.api.deps import (
    get_bus,
    get_caption_generator,
    get_config,
    get_current_user_id,
    get_engine,
    get_rules,
)
from habitat.config import HabitatConfig
from habitat.engine.karma import KarmaRules
from habitat.services import completion_service

router = APIRouter(prefix="/habits", tags=["habits"])


class CompleteHabitBody(BaseModel):
    image: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    publish_as_atom: bool = False


@router.post("/{habit_id}/complete", status_code=201)
async def complete_habit(
    habit_id: int,
    body: CompleteHabitBody,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
    rules: KarmaRules = Depends(get_rules),
    generator=Depends(get_caption_generator),
    bus=Depends(get_bus),
):
    result = await completion_service.complete_habit(
        engine,
        habit_id=habit_id,
        user_id=user_id,
        image=body.image,
        notes=body.notes,
        publish_as_atom=body.publish_as_atom,
        caption_generator=generator,
        caption_timeout=cfg.caption_timeout_seconds,
        rules=rules,
        tz=cfg.tz,
        bus=bus,
    )
    message = (
        "Habit completed and published as atom"
        if result.was_published
        else "Habit completed successfully"
    )
    return {"success": True, "message": message, **result.to_dict()}
