"""
habitat.services.completion_service — Completion Ledger
========================================================

``complete_habit`` runs the stages below in this order; each rejection has
its own error code:

    1. habit exists, is owned by the caller and is active   HABIT_NOT_FOUND
    2. publish request is valid for the habit type          IMAGE_REQUIRED_FOR_SHAREABLE
                                                            PERSONAL_HABIT_NOT_SHAREABLE
    3. occurrence window still has room                     NOT_APPLICABLE_TODAY
                                                            ALREADY_COMPLETED
    4. insert the completion
    5. insert the atom (shareable + publish + image)
    6. award total karma (best effort)

Stages 1-3 run first as a read-only precheck so rejected requests never
wait on the caption generator.  The caption is produced outside any
transaction, then stages 1-5 are re-validated and written in one
transaction holding the habit row lock.  Aligned windows are also guarded
by the ``uq_completions_habit_window`` constraint; a violation from a
concurrent writer surfaces as ``ALREADY_COMPLETED``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from typing import TYPE_CHECKING

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from habitat import errors
from habitat.database.engine import run_db
from habitat.database.models import Atom, Category, Habit, HabitCompletion, HabitType
from habitat.engine.events import EngagementEvent, EventType, Room
from habitat.engine.karma import KarmaRules
from habitat.engine.occurrence import OccurrenceWindow, check_eligibility, resolve_window
from habitat.services import karma_service
from habitat.services.caption_service import CaptionGenerator, caption_with_fallback

if TYPE_CHECKING:
    from habitat.services.event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionPlan:
    """What the read-only precheck learned about the habit."""

    habit_id: int
    habit_title: str
    habit_type: HabitType
    category_name: str
    occurrence: str
    publish: bool


@dataclass(frozen=True, slots=True)
class CompletionResult:
    completion: HabitCompletion
    atom: Atom | None
    habit_type: HabitType
    was_published: bool
    karma_awarded: int = 0
    events: list[EngagementEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        atom = self.atom
        return {
            "completion": {
                "id": self.completion.id,
                "habit_id": self.completion.habit_id,
                "completed_at": self.completion.completed_at.isoformat(),
                "image": self.completion.image,
                "notes": self.completion.notes,
                "is_published": self.completion.is_published,
            },
            "atom": None if atom is None else {
                "id": atom.id,
                "caption": atom.caption,
                "image": atom.image,
                "habit_title": atom.habit_title,
                "upvotes": atom.upvotes,
                "downvotes": atom.downvotes,
                "net_votes": atom.net_votes,
                "is_completed": atom.is_completed,
            },
            "habit_type": self.habit_type.value,
            "was_published": self.was_published,
            "karma_awarded": self.karma_awarded,
        }


# ---------------------------------------------------------------------------
# Stage helpers
# ---------------------------------------------------------------------------
def _load_habit(session: Session, habit_id: int, user_id: int, *, lock: bool) -> Habit:
    stmt = select(Habit).where(
        Habit.id == habit_id,
        Habit.user_id == user_id,
        Habit.is_active.is_(True),
    )
    if lock:
        stmt = stmt.with_for_update()
    habit = session.scalar(stmt)
    if habit is None:
        raise errors.NotFoundError(
            "Habit not found or inactive", code=errors.HABIT_NOT_FOUND,
        )
    return habit


def _check_publish(habit: Habit, image: str | None, publish_as_atom: bool) -> bool:
    if not publish_as_atom:
        return False
    if habit.type == HabitType.SHAREABLE and not image:
        raise errors.ConflictError(
            "Image is required for shareable habits",
            code=errors.IMAGE_REQUIRED_FOR_SHAREABLE,
        )
    if habit.type == HabitType.PERSONAL:
        raise errors.ConflictError(
            "Personal habits cannot be published as atoms",
            code=errors.PERSONAL_HABIT_NOT_SHAREABLE,
        )
    return True


def _count_in_window(session: Session, habit_id: int, window: OccurrenceWindow) -> int:
    start = window.start.astimezone(UTC)
    end = window.end.astimezone(UTC)
    upper = (
        HabitCompletion.completed_at <= end
        if window.inclusive_end
        else HabitCompletion.completed_at < end
    )
    return session.scalar(
        select(func.count()).select_from(HabitCompletion).where(
            HabitCompletion.habit_id == habit_id,
            HabitCompletion.completed_at >= start,
            upper,
        )
    ) or 0


def _check_window(
    session: Session, habit: Habit, now: datetime, tz: tzinfo | None,
) -> tuple[OccurrenceWindow, int]:
    window = resolve_window(habit.occurrence, now, tz)
    # inapplicable windows are rejected without a storage lookup
    prior = _count_in_window(session, habit.id, window) if window.applicable else 0
    verdict = check_eligibility(window, prior)
    if not verdict.eligible:
        raise errors.ConflictError(verdict.reason, code=verdict.code)
    return window, prior


def _category_name(session: Session, habit: Habit) -> str:
    category = session.get(Category, habit.category_id)
    return category.name if category is not None else "habits"


# ---------------------------------------------------------------------------
# Synchronous stages (run through run_db)
# ---------------------------------------------------------------------------
def precheck_completion(
    engine: Engine,
    *,
    habit_id: int,
    user_id: int,
    image: str | None = None,
    publish_as_atom: bool = False,
    now: datetime,
    tz: tzinfo | None = None,
) -> CompletionPlan:
    """Stages 1-3, read-only."""
    with Session(engine) as session:
        habit = _load_habit(session, habit_id, user_id, lock=False)
        publish = _check_publish(habit, image, publish_as_atom)
        _check_window(session, habit, now, tz)
        return CompletionPlan(
            habit_id=habit.id,
            habit_title=habit.title,
            habit_type=HabitType(habit.type),
            category_name=_category_name(session, habit),
            occurrence=habit.occurrence,
            publish=publish,
        )


def record_completion(
    engine: Engine,
    *,
    habit_id: int,
    user_id: int,
    image: str | None = None,
    notes: str | None = None,
    publish_as_atom: bool = False,
    caption: str | None = None,
    now: datetime,
    tz: tzinfo | None = None,
) -> CompletionResult:
    """Stages 1-5 in one transaction under the habit row lock."""
    now = now if now.tzinfo is not None else now.replace(tzinfo=UTC)
    completed_at = now.astimezone(UTC)

    with Session(engine, expire_on_commit=False) as session:
        habit = _load_habit(session, habit_id, user_id, lock=True)
        publish = _check_publish(habit, image, publish_as_atom)
        window, prior = _check_window(session, habit, now, tz)

        completion = HabitCompletion(
            habit_id=habit.id,
            user_id=user_id,
            completed_at=completed_at,
            image=image,
            notes=notes,
            is_published=False,
            window_key=window.key,
            window_slot=prior if window.key is not None else 0,
        )
        session.add(completion)

        atom = None
        if publish:
            atom = Atom(
                habit_id=habit.id,
                user_id=user_id,
                image=image,
                caption=caption or "",
                habit_title=habit.title,
                habit_type=habit.type,
                completion_time=completed_at,
                upvotes=0,
                downvotes=0,
                net_votes=0,
                is_completed=False,
            )
            completion.atom = atom
            completion.is_published = True

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info(
                "Concurrent completion of habit %s in window %s rejected",
                habit_id, window.key,
            )
            raise errors.ConflictError(
                f"Habit already completed for this {window.occurrence.value} period",
                code=errors.ALREADY_COMPLETED,
            ) from None

        habit_type = HabitType(habit.type)

    logger.info(
        "Habit %s completed by user %s (window=%s slot=%d published=%s)",
        habit_id, user_id, window.key, completion.window_slot, publish,
    )
    return CompletionResult(
        completion=completion,
        atom=atom,
        habit_type=habit_type,
        was_published=atom is not None,
    )


def completion_events(
    result: CompletionResult, user_id: int, habit_title: str,
) -> list[EngagementEvent]:
    events = [
        EngagementEvent(
            EventType.COMPLETION_SUCCEEDED,
            Room.user(user_id),
            {
                "habit_id": result.completion.habit_id,
                "completion_id": result.completion.id,
                "habit_title": habit_title,
                "atom_id": result.atom.id if result.atom else None,
                "karma_awarded": result.karma_awarded,
            },
        ),
    ]
    if result.atom is not None:
        events.append(EngagementEvent(
            EventType.FEED_NEW_ATOM,
            Room.followers(user_id),
            {
                "user_id": user_id,
                "atom_id": result.atom.id,
                "habit_title": habit_title,
                "caption": result.atom.caption,
            },
        ))
    events.append(EngagementEvent(
        EventType.LEADERBOARD_UPDATE,
        Room.LEADERBOARD,
        {"user_id": user_id, "type": "habit_completed"},
    ))
    return events


# ---------------------------------------------------------------------------
# Public operation
# ---------------------------------------------------------------------------
async def complete_habit(
    engine: Engine,
    *,
    habit_id: int,
    user_id: int,
    image: str | None = None,
    notes: str | None = None,
    publish_as_atom: bool = False,
    caption_generator: CaptionGenerator | None = None,
    caption_timeout: float = 8.0,
    rules: KarmaRules | None = None,
    tz: tzinfo | None = None,
    now: datetime | None = None,
    bus: EventBus | None = None,
) -> CompletionResult:
    """Record a completion, publish its atom if requested, award karma."""
    rules = rules or KarmaRules()
    now = now or datetime.now(UTC)

    plan = await run_db(
        precheck_completion, engine,
        habit_id=habit_id, user_id=user_id, image=image,
        publish_as_atom=publish_as_atom, now=now, tz=tz,
    )

    caption = None
    if plan.publish:
        caption = await caption_with_fallback(
            caption_generator,
            habit_title=plan.habit_title,
            category_name=plan.category_name,
            occurrence=plan.occurrence,
            notes=notes,
            timeout=caption_timeout,
        )

    result = await run_db(
        record_completion, engine,
        habit_id=habit_id, user_id=user_id, image=image, notes=notes,
        publish_as_atom=publish_as_atom, caption=caption, now=now, tz=tz,
    )

    awarded = 0
    try:
        if await run_db(
            karma_service.increment_total_karma, engine, user_id, rules.completion_points,
        ):
            awarded = rules.completion_points
    except Exception:
        logger.exception(
            "Karma increment failed for user %s after completing habit %s",
            user_id, habit_id,
        )

    result = CompletionResult(
        completion=result.completion,
        atom=result.atom,
        habit_type=result.habit_type,
        was_published=result.was_published,
        karma_awarded=awarded,
    )
    result.events.extend(completion_events(result, user_id, plan.habit_title))
    if bus is not None:
        await bus.publish(result.events)
    return result
