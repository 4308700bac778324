"""
habitat.services.settings_service — Scoring settings reads & writes
====================================================================

Typed access to the ``settings`` table.  On PostgreSQL every write queues a
``NOTIFY settings_changed`` inside the same transaction so each process's
:class:`~habitat.engine.cache.ConfigCache` reloads after commit.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from habitat import errors
from habitat.database.models import Setting
from habitat.database.seed import DEFAULT_SETTINGS
from habitat.engine.cache import decode_setting, notify_before_commit

if TYPE_CHECKING:
    from habitat.engine.cache import ConfigCache

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_setting_value(engine: Engine, key: str, default: Any = None) -> Any:
    """Parsed JSON value of *key*, or *default*."""
    with Session(engine) as session:
        row = session.get(Setting, key)
        return default if row is None else decode_setting(row.value_json)


def get_all_settings(engine: Engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(select(Setting).order_by(Setting.category, Setting.key)).all()
        return [
            {
                "key": r.key,
                "value": decode_setting(r.value_json),
                "category": r.category,
                "description": r.description,
                "updated_at": r.updated_at.isoformat() if r.updated_at else None,
            }
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def _apply(
    session: Session,
    key: str,
    value: Any,
    category: str | None,
    description: str | None,
) -> None:
    row = session.get(Setting, key)
    if row is None:
        session.add(Setting(
            key=key,
            value_json=json.dumps(value),
            category=category or "general",
            description=description,
        ))
        return
    row.value_json = json.dumps(value)
    if category is not None:
        row.category = category
    if description is not None:
        row.description = description


def _commit_with_notify(engine: Engine, session: Session) -> None:
    if engine.dialect.name == "postgresql":
        notify_before_commit(session, "settings")
    session.commit()


def upsert_setting(
    engine: Engine,
    *,
    key: str,
    value: Any,
    category: str = "general",
    description: str | None = None,
    cache: ConfigCache | None = None,
) -> None:
    """Insert or update one setting.

    *cache*, when given, is reloaded immediately so the writing process does
    not wait for its own NOTIFY (and so non-PG backends still see the change).
    """
    with Session(engine) as session:
        _apply(session, key, value, category, description)
        _commit_with_notify(engine, session)

    logger.info("Setting %s updated → %r", key, value)
    if cache is not None:
        cache.handle_notify("settings")


def bulk_upsert(
    engine: Engine,
    items: list[dict],
    *,
    cache: ConfigCache | None = None,
) -> int:
    """Write many scoring settings in one transaction with a single NOTIFY.

    Each item needs ``key`` and ``value``; ``category`` and ``description``
    are optional.  Only keys of the default settings catalogue are accepted,
    and one unknown key rejects the whole batch.

    Returns the number of rows touched.
    """
    unknown = sorted({item["key"] for item in items} - DEFAULT_SETTINGS.keys())
    if unknown:
        raise errors.ValidationError(
            f"Unknown setting(s): {', '.join(unknown)}", code=errors.UNKNOWN_SETTING,
        )
    if not items:
        return 0

    with Session(engine) as session:
        for item in items:
            _apply(
                session, item["key"], item["value"],
                item.get("category"), item.get("description"),
            )
        _commit_with_notify(engine, session)

    logger.info("Updated %d setting(s): %s", len(items), ", ".join(i["key"] for i in items))
    if cache is not None:
        cache.handle_notify("settings")
    return len(items)
