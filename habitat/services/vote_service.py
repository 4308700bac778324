"""
habitat.services.vote_service — Atom & Vote Ledger (persistence)
=================================================================

Both vote entry points (REST route and realtime socket) call
:func:`vote_on_atom` / :func:`remove_vote`.  Each call is one transaction:

    1. validate the vote type (before touching storage),
    2. ``SELECT … FOR UPDATE`` the atom row,
    3. compute the transition with :mod:`habitat.engine.votes`,
    4. create / update / delete the ``atom_votes`` row,
    5. :func:`apply_vote_delta` — one ``UPDATE`` for all counters,
    6. commit.

A concurrent first vote by the same user collides on the
``(atom_id, user_id)`` primary key; that attempt is retried once, at which
point the competing row is visible and the input becomes an ordinary
toggle or flip.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine, case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitat import errors
from habitat.database.models import Atom, AtomVote, VoteType
from habitat.engine.events import EngagementEvent, EventType, Room
from habitat.engine.votes import (
    VoteAction,
    VoteDelta,
    VoteTransition,
    parse_vote_type,
    removal,
    transition,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VoteOutcome:
    atom_id: int
    owner_id: int
    voter_id: int
    action: VoteAction
    vote_type: VoteType | None
    upvotes: int
    downvotes: int
    net_votes: int
    is_completed: bool
    events: list[EngagementEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "atom_id": self.atom_id,
            "upvotes": self.upvotes,
            "downvotes": self.downvotes,
            "net_votes": self.net_votes,
            "is_completed": self.is_completed,
            "user_vote": {
                "vote_type": self.vote_type.value if self.vote_type else None,
                "action": self.action.value,
            },
        }


# ---------------------------------------------------------------------------
# Counter mutation
# ---------------------------------------------------------------------------
def apply_vote_delta(session: Session, atom_id: int, delta: VoteDelta) -> None:
    """Apply *delta* to an atom's counters in a single ``UPDATE``.

    ``is_completed`` is re-derived from the pre-update ``net_votes`` plus the
    delta inside the same statement, so it can never disagree with the
    counters.  This is the only code path that writes vote counters.
    """
    session.execute(
        update(Atom)
        .where(Atom.id == atom_id)
        .values(
            upvotes=Atom.upvotes + delta.up,
            downvotes=Atom.downvotes + delta.down,
            net_votes=Atom.net_votes + delta.net,
            is_completed=case((Atom.net_votes + delta.net > 0, True), else_=False),
        )
        .execution_options(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------
def _apply(
    engine: Engine,
    atom_id: int,
    user_id: int,
    decide: Callable[[VoteType | None], VoteTransition],
    now: datetime,
) -> VoteOutcome:
    with Session(engine, expire_on_commit=False) as session:
        atom = session.scalar(select(Atom).where(Atom.id == atom_id).with_for_update())
        if atom is None:
            raise errors.NotFoundError("Atom not found", code=errors.ATOM_NOT_FOUND)

        existing = session.get(AtomVote, (atom_id, user_id))
        previous = VoteType(existing.vote_type) if existing is not None else None
        step = decide(previous)

        if step.current is None:
            session.delete(existing)
        elif existing is None:
            session.add(AtomVote(
                atom_id=atom_id,
                user_id=user_id,
                vote_type=step.current.value,
                created_at=now,
                updated_at=now,
            ))
        else:
            existing.vote_type = step.current.value
            existing.updated_at = now
        session.flush()

        apply_vote_delta(session, atom_id, step.delta)
        session.refresh(atom)
        session.commit()

        outcome = VoteOutcome(
            atom_id=atom.id,
            owner_id=atom.user_id,
            voter_id=user_id,
            action=step.action,
            vote_type=step.current,
            upvotes=atom.upvotes,
            downvotes=atom.downvotes,
            net_votes=atom.net_votes,
            is_completed=atom.is_completed,
        )

    outcome.events.extend(_vote_events(outcome))
    logger.info(
        "Vote %s on atom %s by user %s → up=%d down=%d net=%d",
        outcome.action, atom_id, user_id,
        outcome.upvotes, outcome.downvotes, outcome.net_votes,
    )
    return outcome


def _vote_events(outcome: VoteOutcome) -> list[EngagementEvent]:
    events = [EngagementEvent(EventType.VOTE_UPDATED, Room.ATOMS, outcome.to_dict())]
    if outcome.owner_id != outcome.voter_id:
        events.append(EngagementEvent(
            EventType.VOTE_NOTIFICATION,
            Room.user(outcome.owner_id),
            {
                "atom_id": outcome.atom_id,
                "voter_id": outcome.voter_id,
                "vote_type": outcome.vote_type.value if outcome.vote_type else None,
                "action": outcome.action.value,
            },
        ))
    return events


def _with_retry(
    engine: Engine,
    atom_id: int,
    user_id: int,
    decide: Callable[[VoteType | None], VoteTransition],
    now: datetime,
) -> VoteOutcome:
    try:
        return _apply(engine, atom_id, user_id, decide, now)
    except IntegrityError:
        logger.info(
            "Concurrent vote on atom %s by user %s; retrying once", atom_id, user_id,
        )
        return _apply(engine, atom_id, user_id, decide, now)


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------
def vote_on_atom(
    engine: Engine,
    *,
    atom_id: int,
    user_id: int,
    vote_type: str | VoteType,
    now: datetime | None = None,
) -> VoteOutcome:
    """Upvote/downvote with toggle-off and flip semantics."""
    requested = parse_vote_type(vote_type)
    now = now or datetime.now(UTC)
    return _with_retry(
        engine, atom_id, user_id, lambda previous: transition(previous, requested), now,
    )


def remove_vote(
    engine: Engine,
    *,
    atom_id: int,
    user_id: int,
    now: datetime | None = None,
) -> VoteOutcome:
    """Clear the caller's active vote; ``VOTE_NOT_FOUND`` if there is none."""
    now = now or datetime.now(UTC)

    def _decide(previous: VoteType | None) -> VoteTransition:
        if previous is None:
            raise errors.NotFoundError("Vote not found", code=errors.VOTE_NOT_FOUND)
        return removal(previous)

    return _with_retry(engine, atom_id, user_id, _decide, now)
