"""
habitat.engine.occurrence — Occurrence Window Resolver
=======================================================

Pure mapping from a habit's recurrence rule and the current instant to the
window inside which a second completion must be rejected.  No DB I/O.

Rules (calendar boundaries in the deployment timezone):

=============  ==============================================  ===
occurrence     window                                          cap
=============  ==============================================  ===
daily          [today 00:00, tomorrow 00:00)                   1
weekly         [Monday 00:00, +7 days)                         1
once_weekly    same as weekly                                  1
weekdays       daily window Mon–Fri, not applicable Sat/Sun    1
weekends       daily window Sat/Sun, not applicable Mon–Fri    1
biweekly       sliding [now − 14 days, now]                    1
twice_weekly   same as weekly                                  2
=============  ==============================================  ===

Unknown rules fall back to ``daily``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from habitat import constants, errors
from habitat.database.models import Occurrence

logger = logging.getLogger(__name__)

__all__ = [
    "Eligibility",
    "OccurrenceWindow",
    "check_eligibility",
    "normalize_occurrence",
    "resolve_window",
]


@dataclass(frozen=True, slots=True)
class OccurrenceWindow:
    """Resolved eligibility window for one completion attempt.

    ``applicable=False`` means the rule does not apply to today at all
    (``weekdays`` on a weekend, ``weekends`` on a weekday); no storage
    lookup is needed to reject the attempt.
    """

    occurrence: Occurrence
    start: datetime | None
    end: datetime | None
    cap: int = 1
    key: str | None = None
    applicable: bool = True
    inclusive_end: bool = False

    def contains(self, ts: datetime) -> bool:
        if self.start is None or self.end is None:
            return False
        if ts < self.start:
            return False
        return ts <= self.end if self.inclusive_end else ts < self.end


@dataclass(frozen=True, slots=True)
class Eligibility:
    eligible: bool
    reason: str = ""
    code: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def normalize_occurrence(value: str | Occurrence) -> Occurrence:
    """Map a stored occurrence string to :class:`Occurrence` (default daily)."""
    try:
        return Occurrence(value)
    except ValueError:
        logger.debug("Unknown occurrence %r — treating as daily", value)
        return Occurrence.DAILY


def _localize(now: datetime, tz: tzinfo | None) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(tz) if tz is not None else now


def _midnight(day: date, tz: tzinfo | None) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _day_window(occurrence: Occurrence, today: date, tz: tzinfo | None) -> OccurrenceWindow:
    return OccurrenceWindow(
        occurrence=occurrence,
        start=_midnight(today, tz),
        end=_midnight(today + timedelta(days=1), tz),
        key=f"daily:{today.isoformat()}",
    )


def _week_window(
    occurrence: Occurrence, today: date, tz: tzinfo | None, cap: int = 1,
) -> OccurrenceWindow:
    # weekday(): Monday == 0 … Sunday == 6, so Sunday reaches back six days
    monday = today - timedelta(days=today.weekday())
    return OccurrenceWindow(
        occurrence=occurrence,
        start=_midnight(monday, tz),
        end=_midnight(monday + timedelta(days=7), tz),
        cap=cap,
        key=f"week:{monday.isoformat()}",
    )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------
def resolve_window(
    occurrence: str | Occurrence,
    now: datetime,
    tz: tzinfo | None = None,
) -> OccurrenceWindow:
    """Return the :class:`OccurrenceWindow` that *now* falls into.

    *now* may be naive (treated as UTC) or aware; day and week boundaries
    are computed in *tz* (or in *now*'s own zone when *tz* is None).
    """
    occ = normalize_occurrence(occurrence)
    local_now = _localize(now, tz)
    zone = local_now.tzinfo
    today = local_now.date()
    is_weekend = today.weekday() >= 5

    if occ in (Occurrence.WEEKLY, Occurrence.ONCE_WEEKLY):
        return _week_window(occ, today, zone)

    if occ == Occurrence.TWICE_WEEKLY:
        return _week_window(occ, today, zone, cap=constants.TWICE_WEEKLY_CAP)

    if occ == Occurrence.WEEKDAYS and is_weekend:
        return OccurrenceWindow(occurrence=occ, start=None, end=None, applicable=False)

    if occ == Occurrence.WEEKENDS and not is_weekend:
        return OccurrenceWindow(occurrence=occ, start=None, end=None, applicable=False)

    if occ == Occurrence.BIWEEKLY:
        return OccurrenceWindow(
            occurrence=occ,
            start=local_now - timedelta(days=constants.BIWEEKLY_LOOKBACK_DAYS),
            end=local_now,
            inclusive_end=True,
        )

    return _day_window(occ, today, zone)


def check_eligibility(window: OccurrenceWindow, prior_count: int) -> Eligibility:
    """Decide whether one more completion fits into *window*.

    *prior_count* is the number of completions already recorded inside the
    window.  Callers must not query storage for inapplicable windows.
    """
    if not window.applicable:
        return Eligibility(
            eligible=False,
            reason=f"{window.occurrence.value} habit is not applicable today",
            code=errors.NOT_APPLICABLE_TODAY,
        )

    if prior_count >= window.cap:
        if window.occurrence == Occurrence.TWICE_WEEKLY:
            reason = "Habit already completed twice this week"
        else:
            reason = f"Habit already completed for this {window.occurrence.value} period"
        return Eligibility(eligible=False, reason=reason, code=errors.ALREADY_COMPLETED)

    return Eligibility(eligible=True)
