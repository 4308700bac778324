"""
habitat.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn habitat.api.main:app --reload --port 8000

or ``python -m habitat``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from habitat.api.deps import get_bus, get_cache, get_config, get_engine  # noqa: E402
from habitat.api.routes.atoms import router as atoms_router  # noqa: E402
from habitat.api.routes.feed import router as feed_router  # noqa: E402
from habitat.api.routes.habits import router as habits_router  # noqa: E402
from habitat.api.routes.leaderboard import router as leaderboard_router  # noqa: E402
from habitat.api.routes.realtime import router as realtime_router  # noqa: E402
from habitat.api.routes.settings import router as settings_router  # noqa: E402
from habitat.api.routes.tracker import router as tracker_router  # noqa: E402
from habitat.database.engine import run_db  # noqa: E402
from habitat.engine.events import EngagementEvent, EventType, Room  # noqa: E402
from habitat.errors import HabitatError  # noqa: E402
from habitat.services import karma_service  # noqa: E402
from habitat.services.event_bus import EventBus  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


# ---------------------------------------------------------------------------
# Leaderboard broadcast
# ---------------------------------------------------------------------------
async def broadcast_leaderboard_once(engine, bus: EventBus) -> int:
    """Publish the current top of the total leaderboard to the leaderboard room."""
    top = await run_db(karma_service.top_users, engine)
    return await bus.publish([
        EngagementEvent(EventType.LEADERBOARD_UPDATE, Room.LEADERBOARD, {"top_users": top}),
    ])


async def _broadcast_loop(engine, bus: EventBus, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        if bus.subscriber_count(Room.LEADERBOARD) == 0:
            continue
        try:
            await broadcast_leaderboard_once(engine, bus)
        except Exception:
            logger.exception("Leaderboard broadcast failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown — warm the engine and settings cache, start the broadcaster."""
    engine = get_engine()
    cfg = get_config()
    cache = get_cache()
    bus = get_bus()
    if engine.dialect.name == "postgresql":
        if bus.forwarding:
            cache.register_event_callback(bus.relay, loop=asyncio.get_running_loop())
        cache.start_listener()

    broadcaster = asyncio.create_task(
        _broadcast_loop(engine, bus, cfg.leaderboard_broadcast_seconds),
        name="leaderboard-broadcast",
    )
    logger.info("%s API started — engine ready (%s)", cfg.app_name, engine.url.database)
    yield
    broadcaster.cancel()
    with suppress(asyncio.CancelledError):
        await broadcaster
    cache.stop_listener()
    logger.info("%s API shutting down", cfg.app_name)


app = FastAPI(
    title="Habitat Engagement API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------
@app.exception_handler(HabitatError)
async def habitat_error_handler(request: Request, exc: HabitatError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
    )


# Mount routers
app.include_router(habits_router, prefix="/api")
app.include_router(atoms_router, prefix="/api")
app.include_router(feed_router, prefix="/api")
app.include_router(leaderboard_router, prefix="/api")
app.include_router(tracker_router, prefix="/api")
app.include_router(realtime_router, prefix="/api")
app.include_router(settings_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
