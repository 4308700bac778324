"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# habitat.api.deps validates JWT_SECRET at import time, so it must be set
# before anything imports the API package.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import itertools  # noqa: E402
from datetime import UTC, datetime  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from habitat.database.models import (  # noqa: E402
    Atom,
    Base,
    Category,
    Habit,
    HabitCompletion,
    HabitType,
    Slot,
    User,
)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Habitat tables.

    StaticPool keeps one shared connection so the worker threads used by
    ``run_db`` (``asyncio.to_thread``) see the same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def mock_cache():
    """A ConfigCache stand-in that returns the fallback default for every key."""
    cache = MagicMock()
    cache.get_int.side_effect = lambda k, d=0: d
    cache.get_float.side_effect = lambda k, d=0.0: d
    cache.get_bool.side_effect = lambda k, d=False: d
    cache.get_setting.side_effect = lambda k, d=None: d
    return cache


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_user(db_engine: Engine):
    def _make(username: str, total_karma: int = 0) -> int:
        with Session(db_engine) as session:
            user = User(username=username, total_karma=total_karma)
            session.add(user)
            session.commit()
            return user.id
    return _make


@pytest.fixture
def make_category(db_engine: Engine):
    def _make(name: str = "Fitness", *, is_default: bool = True, user_id: int | None = None) -> int:
        with Session(db_engine) as session:
            category = Category(name=name, icon="dumbbell", is_default=is_default, user_id=user_id)
            session.add(category)
            session.commit()
            return category.id
    return _make


@pytest.fixture
def make_habit(db_engine: Engine, make_category):
    def _make(
        user_id: int,
        title: str = "Morning run",
        *,
        occurrence: str = "daily",
        habit_type: HabitType = HabitType.SHAREABLE,
        category_id: int | None = None,
        is_active: bool = True,
        slot: Slot = Slot.MORNING,
        start_date: datetime | None = None,
    ) -> int:
        if category_id is None:
            category_id = make_category(f"Cat {title}")
        with Session(db_engine) as session:
            habit = Habit(
                user_id=user_id,
                category_id=category_id,
                title=title,
                type=habit_type.value,
                occurrence=occurrence,
                is_active=is_active,
                slot=slot.value,
            )
            if start_date is not None:
                habit.start_date = start_date
            session.add(habit)
            session.commit()
            return habit.id
    return _make


@pytest.fixture
def add_completion(db_engine: Engine):
    """Insert a raw completion row at *when* (bypasses eligibility)."""
    def _add(habit_id: int, user_id: int, when: datetime) -> int:
        with Session(db_engine) as session:
            completion = HabitCompletion(
                habit_id=habit_id, user_id=user_id, completed_at=when.astimezone(UTC),
            )
            session.add(completion)
            session.commit()
            return completion.id
    return _add


@pytest.fixture
def make_atom(db_engine: Engine, make_habit, add_completion):
    seq = itertools.count(1)

    def _make(owner_id: int) -> int:
        habit_id = make_habit(owner_id, f"Atom habit {next(seq)}")
        completion_id = add_completion(habit_id, owner_id, datetime.now(UTC))
        with Session(db_engine) as session:
            atom = Atom(
                completion_id=completion_id,
                habit_id=habit_id,
                user_id=owner_id,
                image="https://img.example/1.jpg",
                caption="Done!",
                habit_title="Atom habit",
                habit_type=HabitType.SHAREABLE.value,
                completion_time=datetime.now(UTC),
            )
            session.add(atom)
            session.commit()
            return atom.id
    return _make


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
def make_token(sub: int | str = 1, **claims) -> str:
    """Create a bearer token for *sub* with any extra *claims*.  Usable from any test module."""
    import jwt

    from habitat.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": str(sub), **claims}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def bus():
    from habitat.services.event_bus import EventBus

    return EventBus()


@pytest.fixture
def client(db_engine, mock_cache, bus):
    """TestClient wired to the SQLite engine, a mock cache and a local bus."""
    from fastapi.testclient import TestClient

    from habitat.api import deps
    from habitat.api.main import app
    from habitat.config import HabitatConfig
    from habitat.services.caption_service import StaticCaptionGenerator

    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_config] = lambda: HabitatConfig()
    app.dependency_overrides[deps.get_cache] = lambda: mock_cache
    app.dependency_overrides[deps.get_bus] = lambda: bus
    app.dependency_overrides[deps.get_caption_generator] = StaticCaptionGenerator
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
