"""
habitat.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from habitat.config import HabitatConfig, load_config
from habitat.database.engine import create_db_engine
from habitat.engine.cache import ConfigCache
from habitat.engine.karma import KarmaRules
from habitat.services.caption_service import CaptionGenerator, build_caption_generator
from habitat.services.event_bus import EventBus

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32

_WEAK_SECRETS = frozenset({"habitat-dev-secret-change-me", "change-me", "secret", "dev"})


def _secret_problem(secret: str) -> str | None:
    if not secret:
        return (
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        return f"JWT_SECRET is set to a known weak default ({secret!r})."
    if len(secret) < MIN_SECRET_LENGTH:
        return (
            f"JWT_SECRET is too short ({len(secret)} chars); "
            f"use at least {MIN_SECRET_LENGTH}."
        )
    return None


def _load_jwt_secret() -> str:
    """Read JWT_SECRET, refusing to start with a missing or guessable secret."""
    secret = os.getenv("JWT_SECRET", "")
    problem = _secret_problem(secret)
    if problem:
        raise RuntimeError(problem)
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> HabitatConfig:
    path = os.getenv("HABITAT_CONFIG", "config.yaml")
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.warning("%s not found — using default configuration", path)
        return HabitatConfig()


@lru_cache(maxsize=1)
def get_cache() -> ConfigCache:
    cache = ConfigCache(get_engine())
    cache.load_all()
    return cache


@lru_cache(maxsize=1)
def get_bus() -> EventBus:
    forward = os.getenv("HABITAT_FORWARD_EVENTS", "").strip().lower() in ("1", "true", "yes")
    return EventBus(get_engine(), forward=forward)


@lru_cache(maxsize=1)
def get_caption_generator() -> CaptionGenerator:
    return build_caption_generator(get_config())


def get_rules(cache: Annotated[ConfigCache, Depends(get_cache)]) -> KarmaRules:
    return KarmaRules.from_cache(cache)


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------
def decode_user_id(token: str) -> int:
    """Return the integer ``sub`` of a valid bearer token, else raise 401."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return int(payload["sub"])
    except (InvalidTokenError, KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token") from None


def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> int:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return decode_user_id(authorization.split(" ", 1)[1])


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate the bearer token and return its payload.  401 if invalid, 403 if not admin."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token") from None
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
