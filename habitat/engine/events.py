"""
habitat.engine.events — EngagementEvent envelope
=================================================

Every state change the core wants the real-time layer to know about is
normalized into an :class:`EngagementEvent`: a type, the room it is
addressed to, and a JSON-safe payload (entity id + new aggregate values).
Delivery is somebody else's job.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = ["EngagementEvent", "EventType", "Room"]


class EventType(enum.StrEnum):
    VOTE_UPDATED = "atom:vote:updated"
    VOTE_NOTIFICATION = "atom:vote:notification"
    COMPLETION_SUCCEEDED = "habit:completion:success"
    FEED_NEW_ATOM = "feed:new_atom"
    LEADERBOARD_UPDATE = "leaderboard:update"


class Room:
    """Room names the transport layer subscribes sockets to."""

    ATOMS = "atoms"
    LEADERBOARD = "leaderboard"

    @staticmethod
    def user(user_id: int) -> str:
        return f"user:{user_id}"

    @staticmethod
    def followers(user_id: int) -> str:
        return f"followers:{user_id}"


@dataclass(frozen=True, slots=True)
class EngagementEvent:
    type: EventType
    room: str
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "room": self.room,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> EngagementEvent:
        """Rebuild an event from :meth:`to_dict` output (e.g. a relayed NOTIFY payload).

        Raises ``ValueError`` for an unknown type or a malformed timestamp.
        """
        raw_ts = data.get("timestamp")
        return cls(
            type=EventType(data["type"]),
            room=str(data["room"]),
            payload=dict(data.get("payload") or {}),
            timestamp=datetime.fromisoformat(raw_ts) if raw_ts else datetime.now(UTC),
        )
