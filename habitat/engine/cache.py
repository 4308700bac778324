"""
habitat.engine.cache — In-Memory Settings Cache with PG LISTEN/NOTIFY
======================================================================

Scoring settings (points per completion, streak bonus, vote points, ...)
are read on every leaderboard request, so they are cached in memory.
Invalidation uses PostgreSQL LISTEN/NOTIFY: a write to the ``settings``
table followed by ``NOTIFY settings_changed, 'settings'`` reloads every
process's cache.

The same listener relays the ``habitat_events`` channel, on which
:class:`~habitat.services.event_bus.EventBus` forwards engagement events,
to a registered callback on the API event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
from collections.abc import Awaitable, Callable
from contextlib import closing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from habitat.database.models import Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

T = TypeVar("T")

SETTINGS_CHANNEL = "settings_changed"
EVENT_NOTIFY_CHANNEL = "habitat_events"

ALLOWED_NOTIFY_TABLES: frozenset[str] = frozenset({"settings"})

# PG rejects NOTIFY payloads of 8000 bytes or more
MAX_NOTIFY_PAYLOAD = 7900


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    base_seconds: float = 1.0
    max_seconds: float = 60.0
    max_attempts: int = 10
    poll_seconds: float = 5.0


def backoff_delay(policy: ReconnectPolicy, attempt: int, jitter: float | None = None) -> float:
    """Exponential delay before reconnect *attempt* (1-based), plus up to 50% jitter."""
    delay = min(policy.base_seconds * 2 ** (attempt - 1), policy.max_seconds)
    if jitter is None:
        jitter = random.random()
    return delay + delay * 0.5 * jitter


class ConfigCache:
    """Thread-safe view of the ``settings`` table.

    Call :meth:`load_all` once at startup; on PostgreSQL also call
    :meth:`start_listener` so writes from other processes are picked up.
    """

    def __init__(self, engine: Engine, policy: ReconnectPolicy | None = None) -> None:
        self._engine = engine
        self._policy = policy or ReconnectPolicy()
        self._lock = threading.Lock()
        self._settings: dict[str, Any] = {}

        self._connected = False
        self._gave_up = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        self._event_callback: Callable[[dict], Awaitable[None]] | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        self._load_settings()
        logger.info("Settings cache loaded: %d keys", len(self._settings))

    def _load_settings(self) -> None:
        with Session(self._engine) as session:
            rows = session.execute(select(Setting.key, Setting.value_json)).all()
        fresh = {key: decode_setting(raw) for key, raw in rows}
        with self._lock:
            self._settings = fresh

    # -------------------------------------------------------------------
    # Typed accessors
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._settings.get(key, default)

    def _coerce(self, key: str, default: T, cast: Callable[[Any], T]) -> T:
        value = self.get_setting(key)
        if value is None:
            return default
        try:
            return cast(value)
        except (TypeError, ValueError):
            logger.warning("Setting %s=%r is not a valid %s", key, value, cast.__name__)
            return default

    def get_int(self, key: str, default: int = 0) -> int:
        return self._coerce(key, default, int)

    def get_float(self, key: str, default: float = 0.0) -> float:
        return self._coerce(key, default, float)

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self._coerce(key, default, bool)

    # -------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------
    def handle_notify(self, table_name: str) -> None:
        table_name = table_name.strip().lower()
        if table_name == "settings":
            logger.info("Reloading settings after NOTIFY")
            self._load_settings()
        else:
            logger.warning("Ignoring NOTIFY for unknown table %r", table_name)

    @property
    def listener_healthy(self) -> bool:
        return self._connected and not self._gave_up

    @property
    def listener_failed(self) -> bool:
        """True once the listener has exhausted its reconnect attempts."""
        return self._gave_up

    def start_listener(self) -> None:
        """LISTEN for settings changes on a daemon thread (psycopg2 + ``select``)."""
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_listener, daemon=True, name="settings-listener",
        )
        self._thread.start()

    def stop_listener(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("Settings listener stopped")

    def _run_listener(self) -> None:
        import psycopg2

        # str(engine.url) masks the password
        dsn = self._engine.url.render_as_string(hide_password=False).replace(
            "postgresql+psycopg2://", "postgresql://",
        )
        failures = 0
        while not self._stop.is_set():
            try:
                with closing(psycopg2.connect(dsn)) as conn:
                    conn.autocommit = True
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {SETTINGS_CHANNEL};")
                    if self._event_callback is not None:
                        cur.execute(f"LISTEN {EVENT_NOTIFY_CHANNEL};")
                    self._connected = True
                    failures = 0
                    logger.info(
                        "Listening on %s%s", SETTINGS_CHANNEL,
                        f", {EVENT_NOTIFY_CHANNEL}" if self._event_callback else "",
                    )
                    self._drain(conn)
            except Exception:
                self._connected = False
                failures += 1
                if failures >= self._policy.max_attempts:
                    logger.critical(
                        "Settings listener gave up after %d attempts; cache will not refresh",
                        failures,
                    )
                    self._gave_up = True
                    return
                wait = backoff_delay(self._policy, failures)
                logger.exception(
                    "Settings listener lost connection (attempt %d/%d), retrying in %.1fs",
                    failures, self._policy.max_attempts, wait,
                )
                if self._stop.wait(timeout=wait):
                    return

    def _drain(self, conn) -> None:
        while not self._stop.is_set():
            ready, _, _ = _select.select([conn], [], [], self._policy.poll_seconds)
            if not ready:
                continue
            conn.poll()
            while conn.notifies:
                notify = conn.notifies.pop(0)
                payload = notify.payload or ""
                try:
                    self._dispatch(notify.channel, payload)
                except Exception:
                    logger.exception("Failed to apply NOTIFY on %s: %r", notify.channel, payload)

    # -------------------------------------------------------------------
    # Forwarded engagement events
    # -------------------------------------------------------------------
    def register_event_callback(
        self,
        callback: Callable[[dict], Awaitable[None]],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Relay ``habitat_events`` payloads to async *callback* on *loop*.

        Must be called before :meth:`start_listener`; the listener only
        subscribes to the event channel when a callback is registered.
        """
        self._event_callback = callback
        if loop is not None:
            self._event_loop = loop
        logger.info("Registered relay callback for %s", EVENT_NOTIFY_CHANNEL)

    def _dispatch(self, channel: str, payload: str) -> None:
        if channel == EVENT_NOTIFY_CHANNEL:
            self._dispatch_event(payload)
        else:
            self.handle_notify(payload)

    def _dispatch_event(self, raw_payload: str) -> None:
        """Parse a JSON event payload and schedule the relay callback."""
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid event payload (not JSON): %s", raw_payload)
            return
        if not isinstance(data, dict) or not data.get("type"):
            logger.warning("Event payload missing 'type' key: %s", raw_payload)
            return

        callback = self._event_callback
        if callback is None:
            logger.debug("No relay callback for %s", data["type"])
            return
        loop = self._event_loop
        if loop is None or loop.is_closed():
            logger.warning("Cannot relay event %s: no event loop available", data["type"])
            return
        asyncio.run_coroutine_threadsafe(callback(data), loop)


def decode_setting(raw: str | None) -> Any:
    """Parse a stored ``value_json``; malformed JSON is returned as the raw string."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


# ---------------------------------------------------------------------------
# NOTIFY senders
# ---------------------------------------------------------------------------
def notify_before_commit(session: Session, table_name: str) -> None:
    """Queue a cache-invalidation NOTIFY that fires when *session* commits."""
    if table_name not in ALLOWED_NOTIFY_TABLES:
        raise ValueError(
            f"Invalid table name for NOTIFY: {table_name!r}. "
            f"Allowed: {sorted(ALLOWED_NOTIFY_TABLES)}"
        )
    session.execute(text(f"NOTIFY {SETTINGS_CHANNEL}, '{table_name}'"))


def send_event_notify(engine: Engine, payload: dict) -> None:
    """Publish *payload* as JSON on the ``habitat_events`` channel via ``pg_notify``."""
    if "type" not in payload:
        raise ValueError("Event payload must include a 'type' key")
    raw = json.dumps(payload, default=str)
    size = len(raw.encode("utf-8"))
    if size > MAX_NOTIFY_PAYLOAD:
        raise ValueError(f"Event payload too large for NOTIFY ({size} bytes)")
    with engine.begin() as conn:
        conn.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": EVENT_NOTIFY_CHANNEL, "payload": raw},
        )
