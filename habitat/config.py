"""
habitat.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for **deployment** settings: the local timezone that
defines calendar-day boundaries, the caption generator model and timeout,
and leaderboard presentation defaults.  Scoring values (points per
completion, streak bonus, ...) live in the ``settings`` database table and
are read through :class:`~habitat.engine.cache.ConfigCache`.

Usage::

    from habitat.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.timezone)          # "Europe/Berlin"
    print(cfg.tz)                # ZoneInfo('Europe/Berlin')
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HabitatConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    app_name: str = "Habitat"

    # Calendar: every day/week boundary is computed in this zone
    timezone: str = "UTC"

    # Caption generator
    caption_model: str = "gemini-pro"
    caption_timeout_seconds: float = 8.0

    # Leaderboards
    leaderboard_broadcast_seconds: int = 30
    default_leaderboard_limit: int = 50
    history_default_days: int = 30

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HabitatConfig:
    """Read *path* and return a :class:`HabitatConfig` instance.

    Keys missing from the file keep their dataclass defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = HabitatConfig()
    return HabitatConfig(
        app_name=raw.get("app_name", defaults.app_name),
        timezone=raw.get("timezone", defaults.timezone),
        caption_model=raw.get("caption_model", defaults.caption_model),
        caption_timeout_seconds=float(
            raw.get("caption_timeout_seconds", defaults.caption_timeout_seconds)
        ),
        leaderboard_broadcast_seconds=int(
            raw.get("leaderboard_broadcast_seconds", defaults.leaderboard_broadcast_seconds)
        ),
        default_leaderboard_limit=int(
            raw.get("default_leaderboard_limit", defaults.default_leaderboard_limit)
        ),
        history_default_days=int(
            raw.get("history_default_days", defaults.history_default_days)
        ),
    )
