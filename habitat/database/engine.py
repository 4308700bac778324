"""
habitat.database.engine — Database Connection & Async Helper
=============================================================

The API runs on an ``asyncio`` event loop while SQLAlchemy + psycopg2 is
synchronous.  Every service function is a plain synchronous function that
opens its own session; async callers hand it to a worker thread::

    outcome = await run_db(vote_service.vote_on_atom, engine, atom_id=1, ...)

Usage::

    from habitat.database.engine import create_db_engine, init_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS + seed
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, make_url

from habitat.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Vote and completion bursts hold short transactions
POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_pre_ping": True,
    "pool_timeout": 10,
    "pool_recycle": 3600,
}


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build an :class:`Engine` for *url* (default: ``DATABASE_URL``).

    PostgreSQL gets a sized connection pool.  SQLite URLs are accepted for
    local development; row locks and NOTIFY become no-ops there.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        engine = create_engine(parsed, connect_args={"check_same_thread": False})
        logger.warning("Using SQLite (%s): row locking is disabled", parsed.database)
    else:
        engine = create_engine(parsed, **POOL_OPTIONS)
        logger.info("Database engine created → %s", parsed.host)
    return engine


def init_db(engine: Engine) -> None:
    """Create missing tables and seed default scoring settings.

    Production schemas are managed by Alembic (``alembic upgrade head``);
    this covers dev databases where migrations have not run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from habitat.database.seed import seed_default_settings

    seed_default_settings(engine)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await synchronous *func* on the default thread pool."""
    return await asyncio.to_thread(func, *args, **kwargs)
