"""
habitat.api.routes.atoms — Atom voting endpoints
=================================================

Same :mod:`habitat.services.vote_service` calls as the realtime socket.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from habitat.api.deps import get_bus, get_current_user_id, get_engine
from habitat.database.engine import run_db
from habitat.services import vote_service

router = APIRouter(prefix="/atoms", tags=["atoms"])


class VoteBody(BaseModel):
    # validated by the vote ledger so the error carries INVALID_VOTE_TYPE
    vote_type: str


@router.post("/{atom_id}/vote")
async def vote(
    atom_id: int,
    body: VoteBody,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    bus=Depends(get_bus),
):
    outcome = await run_db(
        vote_service.vote_on_atom, engine,
        atom_id=atom_id, user_id=user_id, vote_type=body.vote_type,
    )
    await bus.publish(outcome.events)
    return {"success": True, **outcome.to_dict()}


@router.delete("/{atom_id}/vote")
async def unvote(
    atom_id: int,
    user_id: int = Depends(get_current_user_id),
    engine=Depends(get_engine),
    bus=Depends(get_bus),
):
    outcome = await run_db(
        vote_service.remove_vote, engine, atom_id=atom_id, user_id=user_id,
    )
    await bus.publish(outcome.events)
    return {"success": True, **outcome.to_dict()}
