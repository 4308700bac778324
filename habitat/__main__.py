"""
habitat.__main__ — Entry point for ``python -m habitat``
=========================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (deployment settings).
3. Create the SQLAlchemy engine, ensure tables exist, seed defaults.
4. Serve the FastAPI app with uvicorn (blocking).

Run with::

    uv run python -m habitat
"""

from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

from habitat.config import load_config
from habitat.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("habitat")


def main() -> None:
    """Bootstrap the database and run the Habitat API."""
    load_dotenv()

    cfg = load_config(os.getenv("HABITAT_CONFIG", "config.yaml"))
    logger.info("Config loaded — %s (timezone %s)", cfg.app_name, cfg.timezone)

    engine = create_db_engine()
    init_db(engine)
    engine.dispose()

    uvicorn.run(
        "habitat.api.main:app",
        host=os.getenv("HABITAT_HOST", "0.0.0.0"),
        port=int(os.getenv("HABITAT_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
