"""
habitat.database.seed — Default Settings & Category Seeder
===========================================================

Baseline scoring settings and default habit categories inserted on first
startup.  Idempotent — only inserts rows that don't already exist, so
values edited later are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from habitat import constants
from habitat.database.models import Category, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "karma.completion_points": (
        constants.COMPLETION_POINTS, "karma", "Total karma added per habit completion",
    ),
    "karma.streak_bonus_points": (
        constants.STREAK_BONUS_POINTS, "karma", "Daily karma bonus per full streak period",
    ),
    "karma.streak_bonus_every_days": (
        constants.STREAK_BONUS_EVERY_DAYS, "karma", "Streak days per bonus period",
    ),
    "karma.vote_points": (
        constants.VOTE_POINTS, "karma", "Daily karma per vote cast that day",
    ),
    "karma.category_points": (
        constants.CATEGORY_POINTS, "karma", "Category karma per completion in the category",
    ),
    "karma.history_points": (
        constants.HISTORY_POINTS, "karma", "History karma per completion on a given date",
    ),
    "streak.max_lookback_days": (
        constants.STREAK_MAX_LOOKBACK_DAYS, "streak", "Longest streak the calculator will count",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""

DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    ("Health", "heart"),
    ("Fitness", "dumbbell"),
    ("Learning", "book"),
    ("Mindfulness", "lotus"),
    ("Productivity", "check"),
]


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings and categories that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1

        existing_names = set(session.scalars(
            select(Category.name).where(Category.is_default.is_(True))
        ).all())
        for name, icon in DEFAULT_CATEGORIES:
            if name not in existing_names:
                session.add(Category(name=name, icon=icon, is_default=True))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default rows.", inserted)
