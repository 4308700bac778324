"""
habitat.services.event_bus — Room-addressed event fan-out
==========================================================

Services return :class:`~habitat.engine.events.EngagementEvent` lists; the
bus hands each one to the subscribers of its room.  WebSocket connections
subscribe per room (``user:{id}``, ``atoms``, ``leaderboard``, ...).

A failing subscriber is logged and skipped.  It never affects the
transaction that produced the event, which has already committed.

With an engine attached and ``forward=True`` every event is also sent on
the PostgreSQL ``habitat_events`` channel, tagged with this bus's
``origin``.  Each process's settings listener hands those payloads to
:meth:`EventBus.relay`, which delivers foreign events to local subscribers
and drops the process's own.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING
from uuid import uuid4

from habitat.database.engine import run_db
from habitat.engine.cache import send_event_notify
from habitat.engine.events import EngagementEvent

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

Subscriber = Callable[[EngagementEvent], Awaitable[None]]


class EventBus:
    def __init__(self, engine: Engine | None = None, *, forward: bool = False) -> None:
        self._engine = engine
        self._forward = forward and engine is not None
        self._rooms: dict[str, list[Subscriber]] = defaultdict(list)
        self.origin = uuid4().hex

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def subscribe(self, room: str, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for *room*; returns an unsubscribe function."""
        self._rooms[room].append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(room, callback)

        return _unsubscribe

    def unsubscribe(self, room: str, callback: Subscriber) -> None:
        subscribers = self._rooms.get(room)
        if not subscribers:
            return
        try:
            subscribers.remove(callback)
        except ValueError:
            return
        if not subscribers:
            del self._rooms[room]

    @property
    def forwarding(self) -> bool:
        return self._forward

    def subscriber_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    # -------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------
    async def publish(self, events: Iterable[EngagementEvent]) -> int:
        """Deliver *events* in order.  Returns the number of deliveries."""
        delivered = 0
        for event in events:
            delivered += await self._deliver(event)
            if self._forward:
                await self._forward_event(event)
        return delivered

    async def relay(self, data: dict) -> int:
        """Deliver an event forwarded by another process; never re-forwarded."""
        if data.get("origin") == self.origin:
            return 0
        try:
            event = EngagementEvent.from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Dropping malformed relayed event: %r", data)
            return 0
        return await self._deliver(event)

    async def _deliver(self, event: EngagementEvent) -> int:
        delivered = 0
        for callback in list(self._rooms.get(event.room, ())):
            try:
                await callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Subscriber failed for %s in room %s", event.type, event.room,
                )
        return delivered

    async def _forward_event(self, event: EngagementEvent) -> None:
        try:
            payload = {**event.to_dict(), "origin": self.origin}
            await run_db(send_event_notify, self._engine, payload)
        except Exception:
            logger.warning(
                "Could not forward %s to PG NOTIFY", event.type, exc_info=True,
            )
