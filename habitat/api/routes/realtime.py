"""
habitat.api.routes.realtime — WebSocket entry point
====================================================

``WS /api/ws?token=<jwt>``

Inbound messages are ``{"event": <name>, "data": {...}}``:

* ``atom:vote``      ``{"atom_id", "vote_type"}``
* ``atom:unvote``    ``{"atom_id"}``
* ``habit:complete`` ``{"habit_id", "image"?, "notes"?, "publish_as_atom"?}``
* ``feed:follow``    ``{"user_id"}`` — also receive that user's ``feed:new_atom``

They call the same services as the REST routes.  Outbound frames are
:meth:`EngagementEvent.to_dict` for every event addressed to a room this
socket is in (``user:{id}``, ``atoms``, ``leaderboard`` and any followed
feeds), plus ``{"type": "error", ...}`` frames for rejected messages.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

import pydantic
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from habitat import errors
from habitat.api.deps import (
    decode_user_id,
    get_bus,
    get_caption_generator,
    get_config,
    get_engine,
    get_rules,
)
from habitat.config import HabitatConfig
from habitat.database.engine import run_db
from habitat.engine.events import EngagementEvent, Room
from habitat.engine.karma import KarmaRules
from habitat.services import completion_service, vote_service
from habitat.services.event_bus import EventBus

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])

OUTBOX_SIZE = 256
WS_POLICY_VIOLATION = 1008


class VoteMessage(BaseModel):
    atom_id: int
    vote_type: str


class UnvoteMessage(BaseModel):
    atom_id: int


class CompleteMessage(BaseModel):
    habit_id: int
    image: str | None = None
    notes: str | None = None
    publish_as_atom: bool = False


class FollowMessage(BaseModel):
    user_id: int


def _error_frame(code: str, message: str) -> dict:
    return {"type": "error", "payload": {"success": False, "error": message, "code": code}}


class _Connection:
    """One socket's room subscriptions and outbound queue."""

    def __init__(self, websocket: WebSocket, bus: EventBus, user_id: int) -> None:
        self.websocket = websocket
        self.bus = bus
        self.user_id = user_id
        self.outbox: asyncio.Queue[dict] = asyncio.Queue(maxsize=OUTBOX_SIZE)
        self._unsubscribers: dict[str, Callable[[], None]] = {}

    async def _deliver(self, event: EngagementEvent) -> None:
        self.push(event.to_dict())

    def push(self, frame: dict) -> None:
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("Outbox full for user %s — dropping %s", self.user_id, frame.get("type"))

    def join(self, room: str) -> None:
        if room not in self._unsubscribers:
            self._unsubscribers[room] = self.bus.subscribe(room, self._deliver)

    def leave_all(self) -> None:
        for unsubscribe in self._unsubscribers.values():
            unsubscribe()
        self._unsubscribers.clear()

    async def pump(self) -> None:
        while True:
            frame = await self.outbox.get()
            await self.websocket.send_json(frame)


@router.websocket("/ws")
async def realtime(
    websocket: WebSocket,
    token: str = "",
    engine=Depends(get_engine),
    cfg: HabitatConfig = Depends(get_config),
    rules: KarmaRules = Depends(get_rules),
    generator=Depends(get_caption_generator),
    bus: EventBus = Depends(get_bus),
):
    try:
        user_id = decode_user_id(token)
    except HTTPException:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    await websocket.accept()
    conn = _Connection(websocket, bus, user_id)
    for room in (Room.user(user_id), Room.ATOMS, Room.LEADERBOARD):
        conn.join(room)
    sender = asyncio.create_task(conn.pump())
    logger.info("User %s connected to realtime socket", user_id)

    async def _handle(event: str, data: dict) -> None:
        if event == "atom:vote":
            msg = VoteMessage.model_validate(data)
            outcome = await run_db(
                vote_service.vote_on_atom, engine,
                atom_id=msg.atom_id, user_id=user_id, vote_type=msg.vote_type,
            )
            await bus.publish(outcome.events)
        elif event == "atom:unvote":
            msg = UnvoteMessage.model_validate(data)
            outcome = await run_db(
                vote_service.remove_vote, engine, atom_id=msg.atom_id, user_id=user_id,
            )
            await bus.publish(outcome.events)
        elif event == "habit:complete":
            msg = CompleteMessage.model_validate(data)
            await completion_service.complete_habit(
                engine,
                habit_id=msg.habit_id,
                user_id=user_id,
                image=msg.image,
                notes=msg.notes,
                publish_as_atom=msg.publish_as_atom,
                caption_generator=generator,
                caption_timeout=cfg.caption_timeout_seconds,
                rules=rules,
                tz=cfg.tz,
                bus=bus,
            )
        elif event == "feed:follow":
            msg = FollowMessage.model_validate(data)
            conn.join(Room.followers(msg.user_id))
        else:
            conn.push(_error_frame("UNKNOWN_EVENT", f"Unknown event: {event!r}"))

    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                conn.push(_error_frame("VALIDATION_ERROR", "Message must be a JSON object"))
                continue
            event = str(message.get("event", ""))
            data = message.get("data") or {}
            try:
                await _handle(event, data)
            except errors.HabitatError as exc:
                conn.push({"type": "error", "payload": exc.to_dict()})
            except pydantic.ValidationError as exc:
                conn.push(_error_frame("VALIDATION_ERROR", str(exc.errors()[0]["msg"])))
            except Exception:
                logger.exception("Realtime handler failed for %s from user %s", event, user_id)
                conn.push(_error_frame("INTERNAL_ERROR", "Internal server error"))
    except WebSocketDisconnect:
        logger.info("User %s disconnected from realtime socket", user_id)
    finally:
        conn.leave_all()
        sender.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await sender
