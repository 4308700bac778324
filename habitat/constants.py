"""
habitat.constants — Shared Constants & Helpers
===============================================

Single source of truth for scoring defaults and the caption fallback.
The ``settings`` table may override the scoring values at runtime; these
are the values used when a key is absent.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Scoring defaults (setting key → default)
# ---------------------------------------------------------------------------
COMPLETION_POINTS = 10        # total karma added per completion
STREAK_BONUS_POINTS = 10      # bonus per full streak period
STREAK_BONUS_EVERY_DAYS = 7   # streak period length
VOTE_POINTS = 2               # daily karma per vote cast
CATEGORY_POINTS = 10          # category karma per completion
HISTORY_POINTS = 10           # history karma per completion
STREAK_MAX_LOOKBACK_DAYS = 365

# ---------------------------------------------------------------------------
# Occurrence windows
# ---------------------------------------------------------------------------
BIWEEKLY_LOOKBACK_DAYS = 14
TWICE_WEEKLY_CAP = 2

# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
LEADERBOARD_BROADCAST_TOP = 10
MAX_LEADERBOARD_LIMIT = 200
MAX_HISTORY_DAYS = 365

# ---------------------------------------------------------------------------
# Feed & tracker reads
# ---------------------------------------------------------------------------
TRENDING_WINDOW_DAYS = 7
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
STATS_DEFAULT_DAYS = 30
RECENT_COMPLETIONS = 10


# ---------------------------------------------------------------------------
# Caption fallback
# ---------------------------------------------------------------------------
def fallback_caption(habit_title: str, category_name: str) -> str:
    """Deterministic caption used whenever the generator cannot help."""
    return f"Completed my {habit_title} habit! #{category_name.lower()}"
