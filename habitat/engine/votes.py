"""
habitat.engine.votes — Vote State Machine
==========================================

Pure transition table for one (atom, user) pair.  States are
``None`` (no vote), ``UPVOTE`` and ``DOWNVOTE``.  Repeating the active
vote toggles it off; voting the other way flips it.  No DB I/O.

The resulting :class:`VoteDelta` is the only thing the vote ledger applies
to an atom's counters, so ``net == up - down`` holds for every delta and
therefore for every reachable counter state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from habitat import errors
from habitat.database.models import VoteType

__all__ = [
    "VoteAction",
    "VoteDelta",
    "VoteTransition",
    "parse_vote_type",
    "removal",
    "transition",
]


class VoteAction(enum.StrEnum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class VoteDelta:
    """Counter changes for one transition."""

    up: int = 0
    down: int = 0

    @property
    def net(self) -> int:
        return self.up - self.down


@dataclass(frozen=True, slots=True)
class VoteTransition:
    previous: VoteType | None
    current: VoteType | None
    action: VoteAction
    delta: VoteDelta


def _weight(vote: VoteType | None) -> VoteDelta:
    if vote == VoteType.UPVOTE:
        return VoteDelta(up=1)
    if vote == VoteType.DOWNVOTE:
        return VoteDelta(down=1)
    return VoteDelta()


def _between(previous: VoteType | None, current: VoteType | None) -> VoteDelta:
    before, after = _weight(previous), _weight(current)
    return VoteDelta(up=after.up - before.up, down=after.down - before.down)


def parse_vote_type(value: str | VoteType) -> VoteType:
    """Validate a raw vote type, raising before anything is touched."""
    try:
        return VoteType(value)
    except ValueError:
        raise errors.ValidationError(
            f"Invalid vote type: {value!r}", code=errors.INVALID_VOTE_TYPE,
        ) from None


def transition(previous: VoteType | None, requested: VoteType) -> VoteTransition:
    """Apply a ``vote(requested)`` input to the *previous* state."""
    if previous is None:
        current, action = requested, VoteAction.ADDED
    elif previous == requested:
        current, action = None, VoteAction.REMOVED
    else:
        current, action = requested, VoteAction.UPDATED
    return VoteTransition(
        previous=previous,
        current=current,
        action=action,
        delta=_between(previous, current),
    )


def removal(previous: VoteType) -> VoteTransition:
    """Explicit ``remove_vote()`` — the toggle-off of whatever is active."""
    return VoteTransition(
        previous=previous,
        current=None,
        action=VoteAction.REMOVED,
        delta=_between(previous, None),
    )
