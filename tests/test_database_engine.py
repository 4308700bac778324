"""
tests/test_database_engine.py — Engine factory & async bridge
==============================================================
"""

from __future__ import annotations

import asyncio
import threading

import pytest
from sqlalchemy import inspect

from habitat.database.engine import create_db_engine, init_db, run_db
from habitat.services import settings_service


def test_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
        create_db_engine()


def test_sqlite_url_initializes_schema(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'habitat.db'}")
    engine = create_db_engine()
    try:
        init_db(engine)
        init_db(engine)
        tables = set(inspect(engine).get_table_names())
        assert {"users", "habits", "habit_completions", "atoms", "atom_votes", "settings"} <= tables
        assert settings_service.get_all_settings(engine)
    finally:
        engine.dispose()


def test_run_db_uses_worker_thread():
    main = threading.get_ident()

    def _work(a, *, b):
        return a + b, threading.get_ident()

    total, ident = asyncio.run(run_db(_work, 2, b=3))
    assert total == 5
    assert ident != main
