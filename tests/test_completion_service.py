"""
tests/test_completion_service.py — Completion Ledger Integration Tests
=======================================================================

Uses an in-memory SQLite database via the shared conftest fixtures.  The
clock is injected through ``now=``.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from habitat import errors
from habitat.database.models import Atom, HabitCompletion, HabitType, User
from habitat.engine.events import EventType, Room
from habitat.services import completion_service
from habitat.services.event_bus import EventBus

WEDNESDAY = datetime(2026, 10, 14, 9, 0, tzinfo=UTC)
SATURDAY = datetime(2026, 10, 17, 9, 0, tzinfo=UTC)


def _run(coro):
    return asyncio.run(coro)


class _FixedCaption:
    def __init__(self, text: str = "Crushed it 💪 #fitness") -> None:
        self.text = text
        self.calls = 0

    async def generate(self, habit_title, category_name, occurrence, notes=None):
        self.calls += 1
        return self.text


class _BrokenCaption:
    async def generate(self, habit_title, category_name, occurrence, notes=None):
        raise RuntimeError("upstream down")


def _complete(engine, **kwargs):
    kwargs.setdefault("now", WEDNESDAY)
    return _run(completion_service.complete_habit(engine, **kwargs))


def _count(engine, model) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def user(make_user):
    return make_user("alice")


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------
class TestCompleteHabit:
    def test_personal_completion_awards_karma(self, db_engine, user, make_habit):
        habit = make_habit(user, habit_type=HabitType.PERSONAL)
        result = _complete(db_engine, habit_id=habit, user_id=user)

        assert result.atom is None
        assert result.was_published is False
        assert result.habit_type == HabitType.PERSONAL
        assert result.karma_awarded == 10
        assert result.completion.window_key == "daily:2026-10-14"
        with Session(db_engine) as session:
            assert session.get(User, user).total_karma == 10

    def test_shareable_publish_creates_atom(self, db_engine, user, make_habit):
        habit = make_habit(user, "Evening yoga")
        caption = _FixedCaption()
        result = _complete(
            db_engine, habit_id=habit, user_id=user,
            image="https://img.example/yoga.jpg", notes="felt great",
            publish_as_atom=True, caption_generator=caption,
        )

        assert result.was_published is True
        assert result.completion.is_published is True
        assert caption.calls == 1
        with Session(db_engine) as session:
            atom = session.scalar(select(Atom))
            assert atom.completion_id == result.completion.id
            assert atom.caption == "Crushed it 💪 #fitness"
            assert atom.habit_title == "Evening yoga"
            assert (atom.upvotes, atom.downvotes, atom.net_votes) == (0, 0, 0)
            assert atom.is_completed is False

    def test_caption_failure_falls_back(self, db_engine, user, make_habit, make_category):
        category = make_category("Mindfulness")
        habit = make_habit(user, "Meditate", category_id=category)
        result = _complete(
            db_engine, habit_id=habit, user_id=user, image="x.jpg",
            publish_as_atom=True, caption_generator=_BrokenCaption(),
        )
        assert result.atom.caption == "Completed my Meditate habit! #mindfulness"

    def test_shareable_without_publish_has_no_atom(self, db_engine, user, make_habit):
        habit = make_habit(user)
        result = _complete(db_engine, habit_id=habit, user_id=user, image="x.jpg")
        assert result.atom is None
        assert _count(db_engine, Atom) == 0

    def test_events_emitted(self, db_engine, user, make_habit):
        bus = EventBus()
        received = []

        async def _collect(event):
            received.append(event)

        for room in (Room.user(user), Room.followers(user), Room.LEADERBOARD):
            bus.subscribe(room, _collect)

        habit = make_habit(user)
        _complete(
            db_engine, habit_id=habit, user_id=user, image="x.jpg",
            publish_as_atom=True, bus=bus,
        )
        assert [e.type for e in received] == [
            EventType.COMPLETION_SUCCEEDED,
            EventType.FEED_NEW_ATOM,
            EventType.LEADERBOARD_UPDATE,
        ]
        assert received[0].payload["karma_awarded"] == 10


# ---------------------------------------------------------------------------
# Rejections (stage order)
# ---------------------------------------------------------------------------
class TestRejections:
    def test_unknown_habit(self, db_engine, user):
        with pytest.raises(errors.NotFoundError) as exc_info:
            _complete(db_engine, habit_id=999, user_id=user)
        assert exc_info.value.code == errors.HABIT_NOT_FOUND

    def test_someone_elses_habit(self, db_engine, user, make_user, make_habit):
        other = make_user("bob")
        habit = make_habit(other)
        with pytest.raises(errors.NotFoundError):
            _complete(db_engine, habit_id=habit, user_id=user)

    def test_inactive_habit(self, db_engine, user, make_habit):
        habit = make_habit(user, is_active=False)
        with pytest.raises(errors.NotFoundError):
            _complete(db_engine, habit_id=habit, user_id=user)

    def test_shareable_publish_requires_image(self, db_engine, user, make_habit):
        habit = make_habit(user)
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, publish_as_atom=True)
        assert exc_info.value.code == errors.IMAGE_REQUIRED_FOR_SHAREABLE
        assert _count(db_engine, HabitCompletion) == 0

    def test_personal_cannot_publish(self, db_engine, user, make_habit):
        habit = make_habit(user, habit_type=HabitType.PERSONAL)
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(
                db_engine, habit_id=habit, user_id=user,
                image="x.jpg", publish_as_atom=True,
            )
        assert exc_info.value.code == errors.PERSONAL_HABIT_NOT_SHAREABLE

    def test_weekdays_on_saturday(self, db_engine, user, make_habit):
        habit = make_habit(user, occurrence="weekdays")
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, now=SATURDAY)
        assert exc_info.value.code == errors.NOT_APPLICABLE_TODAY

    def test_weekends_on_wednesday(self, db_engine, user, make_habit):
        habit = make_habit(user, occurrence="weekends")
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, now=WEDNESDAY)
        assert exc_info.value.code == errors.NOT_APPLICABLE_TODAY

    def test_personal_publish_rejected_after_completion(self, db_engine, user, make_habit):
        habit = make_habit(user, habit_type=HabitType.PERSONAL)
        _complete(db_engine, habit_id=habit, user_id=user)
        # publish check runs before the window check
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(
                db_engine, habit_id=habit, user_id=user,
                image="x.jpg", publish_as_atom=True,
            )
        assert exc_info.value.code == errors.PERSONAL_HABIT_NOT_SHAREABLE

    def test_image_required_before_weekday_check(self, db_engine, user, make_habit):
        habit = make_habit(user, occurrence="weekdays")
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(
                db_engine, habit_id=habit, user_id=user,
                publish_as_atom=True, now=SATURDAY,
            )
        assert exc_info.value.code == errors.IMAGE_REQUIRED_FOR_SHAREABLE

    @pytest.mark.parametrize("occurrence,now", [
        ("weekdays", SATURDAY),
        ("weekends", WEDNESDAY),
    ])
    def test_wrong_day_skips_window_count(self, db_engine, user, make_habit, monkeypatch,
                                          occurrence, now):
        def _unexpected(*args, **kwargs):
            raise AssertionError("window count should not run")

        monkeypatch.setattr(completion_service, "_count_in_window", _unexpected)
        habit = make_habit(user, occurrence=occurrence)
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, now=now)
        assert exc_info.value.code == errors.NOT_APPLICABLE_TODAY

    @pytest.mark.parametrize("occurrence,now", [
        ("weekdays", SATURDAY),
        ("weekends", WEDNESDAY),
    ])
    def test_wrong_day_rejected_without_history(self, db_engine, user, make_habit,
                                                add_completion, occurrence, now):
        fresh = make_habit(user, "Fresh", occurrence=occurrence)
        used = make_habit(user, "Used", occurrence=occurrence)
        add_completion(used, user, now - timedelta(days=2))
        for habit in (fresh, used):
            with pytest.raises(errors.ConflictError) as exc_info:
                _complete(db_engine, habit_id=habit, user_id=user, now=now)
            assert exc_info.value.code == errors.NOT_APPLICABLE_TODAY
        assert _count(db_engine, HabitCompletion) == 1

    @pytest.mark.parametrize("occurrence", ["weekly", "once_weekly"])
    def test_weekly_second_completion_same_week(self, db_engine, user, make_habit, occurrence):
        habit = make_habit(user, occurrence=occurrence)
        monday = datetime(2026, 10, 12, 8, 0, tzinfo=UTC)
        sunday_night = datetime(2026, 10, 18, 23, 0, tzinfo=UTC)
        _complete(db_engine, habit_id=habit, user_id=user, now=monday)

        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, now=sunday_night)
        assert exc_info.value.code == errors.ALREADY_COMPLETED

        _complete(db_engine, habit_id=habit, user_id=user, now=monday + timedelta(days=7))
        assert _count(db_engine, HabitCompletion) == 2

    def test_daily_second_completion_rejected(self, db_engine, user, make_habit):
        habit = make_habit(user)
        _complete(db_engine, habit_id=habit, user_id=user)
        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, now=WEDNESDAY + timedelta(hours=3))
        assert exc_info.value.code == errors.ALREADY_COMPLETED
        # next day is a new window
        _complete(db_engine, habit_id=habit, user_id=user, now=WEDNESDAY + timedelta(days=1))
        assert _count(db_engine, HabitCompletion) == 2

    def test_rejection_awards_no_karma(self, db_engine, user, make_habit):
        habit = make_habit(user)
        _complete(db_engine, habit_id=habit, user_id=user)
        with pytest.raises(errors.ConflictError):
            _complete(db_engine, habit_id=habit, user_id=user)
        with Session(db_engine) as session:
            assert session.get(User, user).total_karma == 10

    def test_twice_weekly_third_attempt(self, db_engine, user, make_habit):
        habit = make_habit(user, occurrence="twice_weekly")
        monday = datetime(2026, 10, 12, 8, 0, tzinfo=UTC)
        first = _complete(db_engine, habit_id=habit, user_id=user, now=monday)
        second = _complete(db_engine, habit_id=habit, user_id=user, now=monday + timedelta(days=2))
        assert (first.completion.window_slot, second.completion.window_slot) == (0, 1)

        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, now=monday + timedelta(days=4))
        assert exc_info.value.code == errors.ALREADY_COMPLETED
        assert "twice this week" in exc_info.value.message

    def test_biweekly_day_ten_rejected_day_fifteen_accepted(self, db_engine, user, make_habit):
        habit = make_habit(user, occurrence="biweekly")
        day0 = datetime(2026, 10, 1, 8, 0, tzinfo=UTC)
        _complete(db_engine, habit_id=habit, user_id=user, now=day0)

        with pytest.raises(errors.ConflictError) as exc_info:
            _complete(db_engine, habit_id=habit, user_id=user, now=day0 + timedelta(days=10))
        assert exc_info.value.code == errors.ALREADY_COMPLETED

        result = _complete(db_engine, habit_id=habit, user_id=user, now=day0 + timedelta(days=15))
        assert result.completion.window_key is None


# ---------------------------------------------------------------------------
# Storage-level guarantees
# ---------------------------------------------------------------------------
class TestWindowConstraint:
    def test_concurrent_writer_maps_to_already_completed(self, db_engine, user, make_habit):
        """A row that slipped past the count check still hits the unique constraint."""
        habit = make_habit(user)
        with Session(db_engine) as session:
            session.add(HabitCompletion(
                habit_id=habit, user_id=user,
                # outside the counted range but occupying today's window key
                completed_at=WEDNESDAY - timedelta(days=3),
                window_key="daily:2026-10-14", window_slot=0,
            ))
            session.commit()

        with pytest.raises(errors.ConflictError) as exc_info:
            _run(completion_service.complete_habit(
                db_engine, habit_id=habit, user_id=user, now=WEDNESDAY,
            ))
        assert exc_info.value.code == errors.ALREADY_COMPLETED
        assert _count(db_engine, HabitCompletion) == 1

    def test_karma_failure_does_not_undo_completion(self, db_engine, user, make_habit, monkeypatch):
        from habitat.services import karma_service

        def _boom(*args, **kwargs):
            raise RuntimeError("karma store down")

        monkeypatch.setattr(karma_service, "increment_total_karma", _boom)
        habit = make_habit(user)
        result = _complete(db_engine, habit_id=habit, user_id=user)
        assert result.karma_awarded == 0
        assert _count(db_engine, HabitCompletion) == 1
