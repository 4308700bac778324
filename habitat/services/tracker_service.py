"""
habitat.services.tracker_service — Today's habits & completion stats
=====================================================================

Read-only views over the completion ledger for the tracker screen:

* :func:`get_today_summary` — active habits grouped by time slot, each
  flagged with whether it was completed today, plus today's totals.
* :func:`get_habit_stats` — completion rate, current streak and per-date /
  per-week counts over the last N days.

Days are calendar days in the configured timezone, as in
:mod:`habitat.services.karma_service`.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import UTC, datetime, timedelta, tzinfo

from sqlalchemy import Engine, or_, select
from sqlalchemy.orm import Session

from habitat import constants, errors
from habitat.database.models import Category, Habit, HabitCompletion, Occurrence, Slot
from habitat.engine.karma import completion_rate, compute_streak, local_day
from habitat.engine.occurrence import resolve_window

logger = logging.getLogger(__name__)

_SLOT_ORDER = {slot.value: i for i, slot in enumerate(Slot)}


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def _completion_dict(c: HabitCompletion) -> dict:
    return {
        "id": c.id,
        "completed_at": _utc(c.completed_at).isoformat(),
        "image": c.image,
        "notes": c.notes,
        "is_published": c.is_published,
    }


# ---------------------------------------------------------------------------
# Today
# ---------------------------------------------------------------------------
def get_today_summary(
    engine: Engine,
    user_id: int,
    *,
    slot: Slot | str | None = None,
    tz: tzinfo | None = None,
    now: datetime | None = None,
) -> dict:
    """Today's habits and totals.

    Habits are grouped by slot (``{"Morning": [...], ...}``) unless *slot*
    is given, in which case a flat list for that slot is returned.  A habit
    counts as completed when it has any completion inside today's window;
    ``stars_earned`` equals the number of completed habits.
    """
    now = now or datetime.now(UTC)
    today = resolve_window(Occurrence.DAILY, now, tz)
    start, end = _utc(today.start), _utc(today.end)

    with Session(engine) as session:
        stmt = (
            select(Habit, Category)
            .join(Category, Category.id == Habit.category_id)
            .where(
                Habit.user_id == user_id,
                Habit.is_active.is_(True),
                Habit.start_date < end,
                or_(Habit.end_date.is_(None), Habit.end_date >= start),
            )
        )
        if slot is not None:
            stmt = stmt.where(Habit.slot == Slot(slot).value)
        rows = session.execute(stmt).all()

        habit_ids = [habit.id for habit, _ in rows]
        done_today: dict[int, list[dict]] = defaultdict(list)
        if habit_ids:
            completions = session.scalars(
                select(HabitCompletion)
                .where(
                    HabitCompletion.habit_id.in_(habit_ids),
                    HabitCompletion.completed_at >= start,
                    HabitCompletion.completed_at < end,
                )
                .order_by(HabitCompletion.completed_at)
            ).all()
            for c in completions:
                done_today[c.habit_id].append(_completion_dict(c))

        entries = [
            {
                "id": habit.id,
                "title": habit.title,
                "type": habit.type,
                "occurrence": habit.occurrence,
                "slot": habit.slot,
                "category": {"id": category.id, "name": category.name, "icon": category.icon},
                "completed_today": bool(done_today.get(habit.id)),
                "completions": done_today.get(habit.id, []),
            }
            for habit, category in rows
        ]

    entries.sort(key=lambda e: (_SLOT_ORDER.get(e["slot"], len(_SLOT_ORDER)), e["title"]))
    completed = sum(1 for e in entries if e["completed_today"])

    if slot is not None:
        habits: list[dict] | dict[str, list[dict]] = entries
    else:
        habits = {}
        for entry in entries:
            habits.setdefault(entry["slot"], []).append(entry)

    return {
        "date": local_day(now, tz).isoformat(),
        "habits": habits,
        "stats": {
            "total_habits": len(entries),
            "completed_habits": completed,
            "completion_rate": completion_rate(completed, len(entries)),
            "stars_earned": completed,
        },
    }


# ---------------------------------------------------------------------------
# Stats over N days
# ---------------------------------------------------------------------------
def get_habit_stats(
    engine: Engine,
    user_id: int,
    *,
    habit_id: int | None = None,
    days: int = constants.STATS_DEFAULT_DAYS,
    tz: tzinfo | None = None,
    now: datetime | None = None,
) -> dict:
    """Completion statistics for the last *days* days (one habit or all).

    ``completion_rate`` is distinct completion days over *days*;
    ``current_streak`` counts consecutive completion days ending today and
    never exceeds *days*.  ``weekly_trends`` is keyed by ISO week
    (``2026-W42``).

    Raises
    ------
    NotFoundError
        ``HABIT_NOT_FOUND`` when *habit_id* does not belong to the user.
    """
    now = _utc(now or datetime.now(UTC))
    days = max(1, min(int(days), constants.MAX_HISTORY_DAYS))

    with Session(engine) as session:
        stmt = (
            select(HabitCompletion, Habit.title)
            .join(Habit, Habit.id == HabitCompletion.habit_id)
            .where(
                HabitCompletion.user_id == user_id,
                HabitCompletion.completed_at >= now - timedelta(days=days),
                HabitCompletion.completed_at <= now,
            )
            .order_by(HabitCompletion.completed_at)
        )
        if habit_id is not None:
            owned = session.scalar(
                select(Habit.id).where(Habit.id == habit_id, Habit.user_id == user_id)
            )
            if owned is None:
                raise errors.NotFoundError("Habit not found", code=errors.HABIT_NOT_FOUND)
            stmt = stmt.where(HabitCompletion.habit_id == habit_id)
        rows = session.execute(stmt).all()

        recent = [
            {**_completion_dict(c), "habit_id": c.habit_id, "habit_title": title}
            for c, title in rows[-constants.RECENT_COMPLETIONS:]
        ]
        completion_days = [local_day(c.completed_at, tz) for c, _ in rows]

    per_day = Counter(completion_days)
    per_week: Counter[str] = Counter()
    for day in completion_days:
        year, week, _ = day.isocalendar()
        per_week[f"{year}-W{week:02d}"] += 1

    streak = compute_streak(per_day.keys(), local_day(now, tz), max_lookback=days)
    return {
        "stats": {
            "completion_rate": completion_rate(len(per_day), days),
            "current_streak": streak,
            "total_completions": len(completion_days),
            "completed_days": len(per_day),
            "total_days": days,
        },
        "heatmap": {day.isoformat(): n for day, n in sorted(per_day.items())},
        "weekly_trends": dict(sorted(per_week.items())),
        "recent_completions": recent,
    }
