"""
habitat.services.karma_service — Karma reads and the total-karma counter
=========================================================================

Read side of the Karma & Streak Calculator: pulls completion timestamps and
vote counts out of the ledgers and feeds them to the pure math in
:mod:`habitat.engine.karma`.  All reads are plain read-only sessions.

The only write is :func:`increment_total_karma`, a single
``UPDATE users SET total_karma = total_karma + :points``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime, timedelta, tzinfo

from sqlalchemy import Engine, func, or_, select, update
from sqlalchemy.orm import Session

from habitat import constants, errors
from habitat.database.models import AtomVote, Category, Habit, HabitCompletion, Occurrence, User
from habitat.engine.karma import (
    KarmaRules,
    compute_streak,
    daily_karma,
    karma_history,
    local_day,
    rank_by_count,
    rank_by_position,
)
from habitat.engine.occurrence import resolve_window

logger = logging.getLogger(__name__)


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def _clamp_limit(limit: int) -> int:
    return max(1, min(int(limit), constants.MAX_LEADERBOARD_LIMIT))


# ---------------------------------------------------------------------------
# Total karma counter
# ---------------------------------------------------------------------------
def increment_total_karma(
    engine: Engine, user_id: int, points: int = constants.COMPLETION_POINTS,
) -> bool:
    """Add *points* to the user's ``total_karma``.  Returns False if no such user."""
    with Session(engine) as session:
        result = session.execute(
            update(User)
            .where(User.id == user_id)
            .values(total_karma=User.total_karma + points)
        )
        session.commit()
    if result.rowcount == 0:
        logger.warning("Karma increment skipped: user %s not found", user_id)
        return False
    logger.debug("Awarded %d karma to user %s", points, user_id)
    return True


# ---------------------------------------------------------------------------
# Daily karma
# ---------------------------------------------------------------------------
def _daily_inputs(
    session: Session,
    now: datetime,
    tz: tzinfo | None,
    rules: KarmaRules,
    user_ids: list[int] | None = None,
):
    """Completion days per user and today's stars/votes per user."""
    today_window = resolve_window(Occurrence.DAILY, now, tz)
    start, end = _utc(today_window.start), _utc(today_window.end)
    lookback_start = start - timedelta(days=rules.max_lookback_days)

    completions_q = select(HabitCompletion.user_id, HabitCompletion.completed_at).where(
        HabitCompletion.completed_at >= lookback_start,
        HabitCompletion.completed_at < end,
    )
    votes_q = (
        select(AtomVote.user_id, func.count())
        .where(AtomVote.created_at >= start, AtomVote.created_at < end)
        .group_by(AtomVote.user_id)
    )
    if user_ids is not None:
        completions_q = completions_q.where(HabitCompletion.user_id.in_(user_ids))
        votes_q = votes_q.where(AtomVote.user_id.in_(user_ids))

    today = local_day(now, tz)
    active_days: dict[int, set] = defaultdict(set)
    stars: dict[int, int] = defaultdict(int)
    for uid, completed_at in session.execute(completions_q):
        day = local_day(completed_at, tz)
        active_days[uid].add(day)
        if day == today:
            stars[uid] += 1

    votes = {uid: count for uid, count in session.execute(votes_q)}
    return today, active_days, stars, votes


def _breakdown(uid, today, active_days, stars, votes, rules):
    streak = compute_streak(active_days.get(uid, set()), today, rules.max_lookback_days)
    return daily_karma(stars.get(uid, 0), streak, votes.get(uid, 0), rules)


def get_user_karma(
    engine: Engine,
    user_id: int,
    *,
    rules: KarmaRules | None = None,
    tz: tzinfo | None = None,
    now: datetime | None = None,
) -> dict:
    """Total karma, total rank, and today's daily breakdown for one user."""
    rules = rules or KarmaRules()
    now = now or datetime.now(UTC)

    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise errors.NotFoundError("User not found", code=errors.USER_NOT_FOUND)

        higher = session.scalar(
            select(func.count()).select_from(User).where(User.total_karma > user.total_karma)
        ) or 0
        today, active_days, stars, votes = _daily_inputs(
            session, now, tz, rules, user_ids=[user_id],
        )
        breakdown = _breakdown(user_id, today, active_days, stars, votes, rules)

        return {
            "user_id": user.id,
            "username": user.username,
            "total_karma": user.total_karma,
            "total_rank": higher + 1,
            "date": today.isoformat(),
            **breakdown.to_dict(),
        }


def get_daily_leaderboard(
    engine: Engine,
    *,
    user_id: int | None = None,
    limit: int = 50,
    rules: KarmaRules | None = None,
    tz: tzinfo | None = None,
    now: datetime | None = None,
) -> dict:
    """Daily karma for every user, ranked by position.

    ``current_user_rank`` is the caller's position in the full ranking, not
    only inside the returned page.
    """
    rules = rules or KarmaRules()
    now = now or datetime.now(UTC)

    with Session(engine) as session:
        users = session.execute(
            select(User.id, User.username, User.total_karma).order_by(User.id)
        ).all()
        today, active_days, stars, votes = _daily_inputs(session, now, tz, rules)

    entries = []
    for uid, username, total in users:
        breakdown = _breakdown(uid, today, active_days, stars, votes, rules)
        entries.append({
            "id": uid,
            "username": username,
            "total_karma": total,
            "daily_karma": breakdown.daily,
            "stars_earned": breakdown.stars_earned,
            "current_streak": breakdown.streak,
            "streak_bonus": breakdown.streak_bonus,
            "social_engagement": breakdown.social_engagement,
        })

    ranked = rank_by_position(entries, key=lambda e: e["daily_karma"])
    current_rank = next((rank for rank, e in ranked if e["id"] == user_id), None)
    return {
        "leaderboard": [{**e, "rank": rank} for rank, e in ranked[:_clamp_limit(limit)]],
        "current_user_rank": current_rank,
        "date": today.isoformat(),
    }


# ---------------------------------------------------------------------------
# Total karma
# ---------------------------------------------------------------------------
def get_total_leaderboard(
    engine: Engine, *, user_id: int | None = None, limit: int = 50,
) -> dict:
    """Users by stored ``total_karma`` (ties by id); caller rank by counting."""
    with Session(engine) as session:
        rows = session.execute(
            select(User.id, User.username, User.total_karma)
            .order_by(User.total_karma.desc(), User.id)
            .limit(_clamp_limit(limit))
        ).all()

        current_rank = None
        current_karma = None
        if user_id is not None:
            current_karma = session.scalar(select(User.total_karma).where(User.id == user_id))
            if current_karma is not None:
                higher = session.scalars(
                    select(User.total_karma).where(User.total_karma > current_karma)
                ).all()
                current_rank = rank_by_count(current_karma, higher)

    return {
        "leaderboard": [
            {"rank": i + 1, "id": uid, "username": name, "total_karma": total}
            for i, (uid, name, total) in enumerate(rows)
        ],
        "current_user_rank": current_rank,
        "current_user_karma": current_karma,
    }


def top_users(engine: Engine, limit: int = constants.LEADERBOARD_BROADCAST_TOP) -> list[dict]:
    """Top of the total leaderboard, for the periodic broadcast."""
    return get_total_leaderboard(engine, limit=limit)["leaderboard"]


# ---------------------------------------------------------------------------
# Category karma
# ---------------------------------------------------------------------------
def get_category_leaderboard(
    engine: Engine,
    category_id: int,
    *,
    user_id: int | None = None,
    limit: int = 50,
    rules: KarmaRules | None = None,
) -> dict:
    """Completions of habits in *category_id* times ``category_points``.

    Only default categories and the caller's own categories are visible.
    """
    rules = rules or KarmaRules()

    with Session(engine) as session:
        visible = [Category.is_default.is_(True)]
        if user_id is not None:
            visible.append(Category.user_id == user_id)
        category = session.scalar(
            select(Category).where(Category.id == category_id, or_(*visible))
        )
        if category is None:
            raise errors.NotFoundError(
                "Category not found", code=errors.CATEGORY_NOT_FOUND,
            )

        habit_counts = dict(session.execute(
            select(Habit.user_id, func.count(Habit.id))
            .where(Habit.category_id == category_id)
            .group_by(Habit.user_id)
        ).all())
        completion_counts = dict(session.execute(
            select(Habit.user_id, func.count(HabitCompletion.id))
            .join(HabitCompletion, HabitCompletion.habit_id == Habit.id)
            .where(Habit.category_id == category_id)
            .group_by(Habit.user_id)
        ).all())
        users = session.execute(
            select(User.id, User.username, User.total_karma)
            .where(User.id.in_(list(habit_counts)))
            .order_by(User.id)
        ).all() if habit_counts else []

        category_info = {"id": category.id, "name": category.name, "icon": category.icon}

    entries = [
        {
            "id": uid,
            "username": name,
            "total_karma": total,
            "category_karma": completion_counts.get(uid, 0) * rules.category_points,
            "category_habits": habit_counts.get(uid, 0),
            "category_completions": completion_counts.get(uid, 0),
        }
        for uid, name, total in users
    ]
    ranked = rank_by_position(entries, key=lambda e: e["category_karma"])
    return {
        "category": category_info,
        "leaderboard": [{**e, "rank": rank} for rank, e in ranked[:_clamp_limit(limit)]],
    }


# ---------------------------------------------------------------------------
# Ranking history
# ---------------------------------------------------------------------------
def get_user_history(
    engine: Engine,
    user_id: int,
    *,
    days: int = 30,
    rules: KarmaRules | None = None,
    tz: tzinfo | None = None,
    now: datetime | None = None,
) -> dict:
    """Per-date karma over the last *days* days.  Completions only, no votes."""
    rules = rules or KarmaRules()
    now = _utc(now or datetime.now(UTC))
    days = max(1, min(int(days), constants.MAX_HISTORY_DAYS))

    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise errors.NotFoundError("User not found", code=errors.USER_NOT_FOUND)
        timestamps = session.scalars(
            select(HabitCompletion.completed_at)
            .where(
                HabitCompletion.user_id == user_id,
                HabitCompletion.completed_at >= now - timedelta(days=days),
                HabitCompletion.completed_at <= now,
            )
            .order_by(HabitCompletion.completed_at)
        ).all()
        user_info = {"id": user.id, "username": user.username}

    return {
        "user": user_info,
        "history": karma_history(timestamps, tz, rules),
        "total_days": days,
    }
