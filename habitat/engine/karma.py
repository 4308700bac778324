"""
habitat.engine.karma — Karma & Streak Calculation
==================================================

Pure scoring math.  No DB I/O: callers pass in completion timestamps,
vote counts and the :class:`KarmaRules` currently in force.

Daily karma for a user on day ``D``::

    stars(D) * completion_points
      + floor(streak(D) / streak_bonus_every_days) * streak_bonus_points
      + votes_cast(D) * vote_points

Ranking history counts completions only (``history_points`` each); votes
cast are deliberately not part of it.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import TYPE_CHECKING, TypeVar

from habitat import constants

if TYPE_CHECKING:
    from habitat.engine.cache import ConfigCache

T = TypeVar("T")

__all__ = [
    "DailyKarma",
    "KarmaRules",
    "completion_rate",
    "compute_streak",
    "daily_karma",
    "karma_history",
    "local_day",
    "rank_by_count",
    "rank_by_position",
]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class KarmaRules:
    """Scoring constants, defaulting to the canonical values."""

    completion_points: int = constants.COMPLETION_POINTS
    streak_bonus_points: int = constants.STREAK_BONUS_POINTS
    streak_bonus_every_days: int = constants.STREAK_BONUS_EVERY_DAYS
    vote_points: int = constants.VOTE_POINTS
    category_points: int = constants.CATEGORY_POINTS
    history_points: int = constants.HISTORY_POINTS
    max_lookback_days: int = constants.STREAK_MAX_LOOKBACK_DAYS

    @classmethod
    def from_cache(cls, cache: ConfigCache | None) -> KarmaRules:
        """Read overrides from the settings cache (defaults when absent)."""
        if cache is None:
            return cls()
        return cls(
            completion_points=cache.get_int(
                "karma.completion_points", constants.COMPLETION_POINTS),
            streak_bonus_points=cache.get_int(
                "karma.streak_bonus_points", constants.STREAK_BONUS_POINTS),
            streak_bonus_every_days=max(1, cache.get_int(
                "karma.streak_bonus_every_days", constants.STREAK_BONUS_EVERY_DAYS)),
            vote_points=cache.get_int("karma.vote_points", constants.VOTE_POINTS),
            category_points=cache.get_int(
                "karma.category_points", constants.CATEGORY_POINTS),
            history_points=cache.get_int(
                "karma.history_points", constants.HISTORY_POINTS),
            max_lookback_days=cache.get_int(
                "streak.max_lookback_days", constants.STREAK_MAX_LOOKBACK_DAYS),
        )


@dataclass(frozen=True, slots=True)
class DailyKarma:
    daily: int
    streak: int
    stars_earned: int
    streak_bonus: int
    social_engagement: int

    def to_dict(self) -> dict:
        return {
            "daily": self.daily,
            "streak": self.streak,
            "stars_earned": self.stars_earned,
            "streak_bonus": self.streak_bonus,
            "social_engagement": self.social_engagement,
        }


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------
def local_day(ts: datetime, tz: tzinfo | None = None) -> date:
    """Calendar date of *ts* in *tz*.  Naive timestamps are read as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(tz).date() if tz is not None else ts.date()


# ---------------------------------------------------------------------------
# Streaks & daily karma
# ---------------------------------------------------------------------------
def compute_streak(
    active_days: Iterable[date],
    reference_day: date,
    max_lookback: int = constants.STREAK_MAX_LOOKBACK_DAYS,
) -> int:
    """Consecutive days with at least one completion, ending at *reference_day*.

    Scans backwards and stops at the first day without a completion, or
    after *max_lookback* days.
    """
    days = active_days if isinstance(active_days, (set, frozenset)) else set(active_days)
    streak = 0
    check = reference_day
    for _ in range(max_lookback):
        if check not in days:
            break
        streak += 1
        check -= timedelta(days=1)
    return streak


def daily_karma(
    stars: int,
    streak: int,
    votes_cast: int,
    rules: KarmaRules | None = None,
) -> DailyKarma:
    rules = rules or KarmaRules()
    bonus = (streak // rules.streak_bonus_every_days) * rules.streak_bonus_points
    total = stars * rules.completion_points + bonus + votes_cast * rules.vote_points
    return DailyKarma(
        daily=total,
        streak=streak,
        stars_earned=stars,
        streak_bonus=bonus,
        social_engagement=votes_cast,
    )


def karma_history(
    timestamps: Iterable[datetime],
    tz: tzinfo | None = None,
    rules: KarmaRules | None = None,
) -> list[dict]:
    """Per-date karma (completions only), ascending by date."""
    rules = rules or KarmaRules()
    per_day = Counter(local_day(ts, tz) for ts in timestamps)
    return [
        {"date": day.isoformat(), "karma": count * rules.history_points}
        for day, count in sorted(per_day.items())
    ]


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------
def rank_by_position(
    entries: Sequence[T], key: Callable[[T], int],
) -> list[tuple[int, T]]:
    """Stable sort descending by *key*; rank is position (ties split)."""
    ordered = sorted(entries, key=key, reverse=True)
    return [(i + 1, entry) for i, entry in enumerate(ordered)]


def rank_by_count(value: int, values: Iterable[int]) -> int:
    """1 + number of values strictly greater than *value* (ties share)."""
    return 1 + sum(1 for v in values if v > value)


def completion_rate(done: int, total: int) -> int:
    """Whole-number percentage of *done* over *total*, halves rounded up; 0 when *total* is 0."""
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)
