"""
tests/test_api_routes.py — FastAPI Route Integration Tests
===========================================================

Routes run against the SQLite fixture through dependency overrides (see
``client`` in conftest).  Verifies auth guards, error rendering, and that
REST and socket entry points share the same ledgers.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy.orm import Session

from conftest import make_token
from habitat.database.models import Atom, HabitType, User


def _auth(user_id: int) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


# ===========================================================================
# Health & auth guards
# ===========================================================================
class TestHealthAndAuth:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.parametrize("endpoint", [
        "/api/leaderboard/daily",
        "/api/leaderboard/total",
        "/api/users/1/karma",
        "/api/users/1/history",
        "/api/feed/trending",
        "/api/tracker/today",
        "/api/tracker/stats",
    ])
    def test_requires_token(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    def test_rejects_invalid_token(self, client):
        resp = client.get("/api/leaderboard/total", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


# ===========================================================================
# Completion
# ===========================================================================
class TestCompleteRoute:
    def test_complete_and_duplicate(self, client, make_user, make_habit):
        uid = make_user("alice")
        habit = make_habit(uid, habit_type=HabitType.PERSONAL)

        resp = client.post(f"/api/habits/{habit}/complete", json={}, headers=_auth(uid))
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["was_published"] is False
        assert body["karma_awarded"] == 10

        again = client.post(f"/api/habits/{habit}/complete", json={}, headers=_auth(uid))
        assert again.status_code == 400
        assert again.json()["code"] == "ALREADY_COMPLETED"
        assert again.json()["success"] is False

    def test_publish_uses_fallback_caption(self, client, make_user, make_habit, make_category):
        uid = make_user("alice")
        habit = make_habit(uid, "Stretch", category_id=make_category("Health"))
        resp = client.post(
            f"/api/habits/{habit}/complete",
            json={"image": "https://img.example/s.jpg", "publish_as_atom": True},
            headers=_auth(uid),
        )
        assert resp.status_code == 201
        assert resp.json()["atom"]["caption"] == "Completed my Stretch habit! #health"

    def test_missing_habit_is_404(self, client, make_user):
        uid = make_user("alice")
        resp = client.post("/api/habits/999/complete", json={}, headers=_auth(uid))
        assert resp.status_code == 404
        assert resp.json()["code"] == "HABIT_NOT_FOUND"

    def test_image_required(self, client, make_user, make_habit):
        uid = make_user("alice")
        habit = make_habit(uid)
        resp = client.post(
            f"/api/habits/{habit}/complete", json={"publish_as_atom": True}, headers=_auth(uid),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "IMAGE_REQUIRED_FOR_SHAREABLE"


# ===========================================================================
# Votes
# ===========================================================================
class TestVoteRoutes:
    def test_vote_toggle_and_remove(self, client, make_user, make_atom):
        owner = make_user("owner")
        voter = make_user("voter")
        atom = make_atom(owner)

        first = client.post(f"/api/atoms/{atom}/vote", json={"vote_type": "upvote"}, headers=_auth(voter))
        assert first.status_code == 200
        assert first.json()["net_votes"] == 1
        assert first.json()["is_completed"] is True

        flip = client.post(f"/api/atoms/{atom}/vote", json={"vote_type": "downvote"}, headers=_auth(voter))
        assert flip.json()["net_votes"] == -1
        assert flip.json()["user_vote"] == {"vote_type": "downvote", "action": "updated"}

        removed = client.delete(f"/api/atoms/{atom}/vote", headers=_auth(voter))
        assert removed.status_code == 200
        assert (removed.json()["upvotes"], removed.json()["downvotes"]) == (0, 0)

        missing = client.delete(f"/api/atoms/{atom}/vote", headers=_auth(voter))
        assert missing.status_code == 404
        assert missing.json()["code"] == "VOTE_NOT_FOUND"

    def test_invalid_vote_type(self, client, make_user, make_atom):
        uid = make_user("voter")
        atom = make_atom(make_user("owner"))
        resp = client.post(f"/api/atoms/{atom}/vote", json={"vote_type": "meh"}, headers=_auth(uid))
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_VOTE_TYPE"

    def test_missing_atom(self, client, make_user):
        uid = make_user("voter")
        resp = client.post("/api/atoms/31337/vote", json={"vote_type": "upvote"}, headers=_auth(uid))
        assert resp.status_code == 404
        assert resp.json()["code"] == "ATOM_NOT_FOUND"


# ===========================================================================
# Leaderboards
# ===========================================================================
class TestLeaderboardRoutes:
    def test_total(self, client, make_user):
        a = make_user("a", 20)
        b = make_user("b", 40)
        body = client.get("/api/leaderboard/total", headers=_auth(a)).json()
        assert [e["id"] for e in body["leaderboard"]] == [b, a]
        assert body["current_user_rank"] == 2

    def test_daily(self, client, make_user):
        a = make_user("a")
        body = client.get("/api/leaderboard/daily?limit=10", headers=_auth(a)).json()
        assert body["leaderboard"][0]["id"] == a
        assert body["current_user_rank"] == 1

    def test_category_not_found(self, client, make_user):
        a = make_user("a")
        resp = client.get("/api/leaderboard/category/55", headers=_auth(a))
        assert resp.status_code == 404
        assert resp.json()["code"] == "CATEGORY_NOT_FOUND"

    def test_user_karma_and_history(self, client, make_user, make_habit, add_completion):
        a = make_user("a", 10)
        add_completion(make_habit(a), a, datetime.now(UTC))
        karma = client.get(f"/api/users/{a}/karma", headers=_auth(a)).json()
        assert karma["total_karma"] == 10
        assert karma["stars_earned"] == 1

        history = client.get(f"/api/users/{a}/history?days=7", headers=_auth(a)).json()
        assert history["total_days"] == 7
        assert sum(h["karma"] for h in history["history"]) == 10

    def test_history_days_bounds(self, client, make_user):
        a = make_user("a")
        assert client.get(f"/api/users/{a}/history?days=0", headers=_auth(a)).status_code == 422


# ===========================================================================
# Feed & tracker
# ===========================================================================
class TestFeedAndTrackerRoutes:
    def test_trending(self, client, db_engine, make_user, make_atom):
        from sqlalchemy import update

        owner = make_user("owner")
        atom = make_atom(owner)
        make_atom(owner)
        with Session(db_engine) as session:
            session.execute(update(Atom).where(Atom.id == atom).values(net_votes=3, upvotes=3))
            session.commit()

        body = client.get("/api/feed/trending?limit=5", headers=_auth(owner)).json()
        assert [a["id"] for a in body["atoms"]] == [atom]
        assert body["pagination"] == {"page": 1, "limit": 5, "total": 1, "pages": 1}
        assert client.get("/api/feed/trending?page=0", headers=_auth(owner)).status_code == 422

    def test_today_and_stats(self, client, make_user, make_habit, add_completion):
        uid = make_user("alice")
        habit = make_habit(uid, start_date=datetime(2026, 1, 1, tzinfo=UTC))
        add_completion(habit, uid, datetime.now(UTC))

        today = client.get("/api/tracker/today", headers=_auth(uid)).json()
        assert today["stats"]["stars_earned"] == 1
        assert today["habits"]["Morning"][0]["completed_today"] is True

        flat = client.get("/api/tracker/today?slot=Night", headers=_auth(uid)).json()
        assert flat["habits"] == []
        assert client.get("/api/tracker/today?slot=Noon", headers=_auth(uid)).status_code == 422

        stats = client.get(f"/api/tracker/stats?habit_id={habit}&days=7", headers=_auth(uid)).json()
        assert stats["stats"]["current_streak"] == 1
        assert stats["stats"]["total_days"] == 7

        missing = client.get("/api/tracker/stats?habit_id=999", headers=_auth(uid))
        assert missing.status_code == 404


# ===========================================================================
# Realtime socket
# ===========================================================================
class TestRealtimeSocket:
    def test_rejects_bad_token(self, client):
        from starlette.websockets import WebSocketDisconnect

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/api/ws?token=bogus") as ws:
                ws.receive_json()

    def test_socket_vote_shares_ledger(self, client, db_engine, make_user, make_atom):
        owner = make_user("owner")
        voter = make_user("voter")
        atom = make_atom(owner)

        with client.websocket_connect(f"/api/ws?token={make_token(voter)}") as ws:
            ws.send_json({"event": "atom:vote", "data": {"atom_id": atom, "vote_type": "upvote"}})
            frame = ws.receive_json()
            assert frame["type"] == "atom:vote:updated"
            assert frame["payload"]["net_votes"] == 1

        # REST sees the socket's vote: repeating it toggles off
        resp = client.post(f"/api/atoms/{atom}/vote", json={"vote_type": "upvote"}, headers=_auth(voter))
        assert resp.json()["net_votes"] == 0
        assert resp.json()["user_vote"]["action"] == "removed"
        with Session(db_engine) as session:
            assert session.get(Atom, atom).is_completed is False

    def test_disconnect_releases_rooms(self, client, bus, make_user):
        from habitat.engine.events import Room

        uid = make_user("alice")
        with client.websocket_connect(f"/api/ws?token={make_token(uid)}") as ws:
            ws.send_json({"event": "feed:follow", "data": {"user_id": 7}})
            ws.send_json({"event": "nope"})
            assert ws.receive_json()["payload"]["code"] == "UNKNOWN_EVENT"
            assert bus.subscriber_count(Room.ATOMS) == 1
            assert bus.subscriber_count(Room.followers(7)) == 1

        for room in (Room.ATOMS, Room.LEADERBOARD, Room.user(uid), Room.followers(7)):
            assert bus.subscriber_count(room) == 0

    def test_socket_error_frame(self, client, make_user):
        uid = make_user("voter")
        with client.websocket_connect(f"/api/ws?token={make_token(uid)}") as ws:
            ws.send_json({"event": "atom:vote", "data": {"atom_id": 1, "vote_type": "sideways"}})
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["payload"]["code"] == "INVALID_VOTE_TYPE"

            ws.send_json({"event": "nope"})
            assert ws.receive_json()["payload"]["code"] == "UNKNOWN_EVENT"

    def test_socket_completion(self, client, db_engine, make_user, make_habit):
        uid = make_user("alice")
        habit = make_habit(uid, habit_type=HabitType.PERSONAL)
        with client.websocket_connect(f"/api/ws?token={make_token(uid)}") as ws:
            ws.send_json({"event": "habit:complete", "data": {"habit_id": habit}})
            frame = ws.receive_json()
            assert frame["type"] == "habit:completion:success"
            assert frame["payload"]["habit_id"] == habit
            assert ws.receive_json()["type"] == "leaderboard:update"
        with Session(db_engine) as session:
            assert session.get(User, uid).total_karma == 10


# ===========================================================================
# Leaderboard broadcaster
# ===========================================================================
class TestLeaderboardBroadcast:
    def test_publishes_top_users(self, db_engine, bus, make_user):
        import asyncio

        from habitat.api.main import broadcast_leaderboard_once
        from habitat.engine.events import Room

        make_user("low", 5)
        top = make_user("high", 50)
        received = []

        async def _listener(event):
            received.append(event)

        bus.subscribe(Room.LEADERBOARD, _listener)
        assert asyncio.run(broadcast_leaderboard_once(db_engine, bus)) == 1
        payload = received[0].payload
        assert received[0].type == "leaderboard:update"
        assert payload["top_users"][0]["id"] == top


# ===========================================================================
# Settings administration
# ===========================================================================
def _admin() -> dict:
    return {"Authorization": f"Bearer {make_token(1, is_admin=True)}"}


class TestSettingsRoutes:
    @pytest.fixture(autouse=True)
    def _seeded(self, db_engine):
        from habitat.database.seed import seed_default_settings

        seed_default_settings(db_engine)

    def test_requires_admin(self, client):
        assert client.get("/api/admin/settings").status_code == 401
        assert client.get("/api/admin/settings", headers=_auth(1)).status_code == 403
        resp = client.put(
            "/api/admin/settings", json=[{"key": "karma.vote_points", "value": 9}], headers=_auth(1),
        )
        assert resp.status_code == 403

    def test_list_and_get(self, client):
        body = client.get("/api/admin/settings", headers=_admin()).json()
        keys = {s["key"] for s in body["settings"]}
        assert "karma.completion_points" in keys

        one = client.get("/api/admin/settings/karma.completion_points", headers=_admin())
        assert one.json() == {"key": "karma.completion_points", "value": 10}

        missing = client.get("/api/admin/settings/karma.nope", headers=_admin())
        assert missing.status_code == 404
        assert missing.json()["code"] == "SETTING_NOT_FOUND"

    def test_update_writes_and_reloads_cache(self, client, db_engine, mock_cache):
        from habitat.services import settings_service

        resp = client.put(
            "/api/admin/settings",
            json=[
                {"key": "karma.vote_points", "value": 4},
                {"key": "karma.completion_points", "value": 12, "description": "Per completion"},
            ],
            headers=_admin(),
        )
        assert resp.status_code == 200
        assert resp.json() == {"updated": 2}
        assert settings_service.get_setting_value(db_engine, "karma.vote_points") == 4
        assert settings_service.get_setting_value(db_engine, "karma.completion_points") == 12
        mock_cache.handle_notify.assert_called_once_with("settings")

    def test_unknown_key_rejects_batch(self, client, db_engine, mock_cache):
        from habitat.services import settings_service

        resp = client.put(
            "/api/admin/settings",
            json=[{"key": "karma.vote_points", "value": 4}, {"key": "karma.bogus", "value": 1}],
            headers=_admin(),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "UNKNOWN_SETTING"
        assert settings_service.get_setting_value(db_engine, "karma.vote_points") == 2
        mock_cache.handle_notify.assert_not_called()


# ===========================================================================
# Lifespan
# ===========================================================================
class TestLifespan:
    @pytest.mark.parametrize("forward", [True, False])
    def test_relay_registered_only_when_forwarding(self, monkeypatch, forward):
        import asyncio
        from unittest.mock import MagicMock

        from habitat.api import main
        from habitat.config import HabitatConfig
        from habitat.services.event_bus import EventBus

        engine = MagicMock()
        engine.dialect.name = "postgresql"
        cache = MagicMock()
        bus = EventBus(engine, forward=forward)
        monkeypatch.setattr(main, "get_engine", lambda: engine)
        monkeypatch.setattr(main, "get_config", HabitatConfig)
        monkeypatch.setattr(main, "get_cache", lambda: cache)
        monkeypatch.setattr(main, "get_bus", lambda: bus)

        async def _cycle():
            async with main.lifespan(main.app):
                pass

        asyncio.run(_cycle())
        assert cache.register_event_callback.called is forward
        if forward:
            assert cache.register_event_callback.call_args.args[0] == bus.relay
        cache.start_listener.assert_called_once()
        cache.stop_listener.assert_called_once()
