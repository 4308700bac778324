"""
habitat.services.caption_service — Atom caption generation
===========================================================

Captions come from an external text generator.  The completion ledger
never lets that collaborator fail a completion: every call goes through
:func:`caption_with_fallback`, which enforces a timeout and substitutes the
deterministic fallback on error, timeout or empty output.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Protocol

import httpx

from habitat import constants
from habitat.config import HabitatConfig

logger = logging.getLogger(__name__)

GEMINI_API = "https://generativelanguage.googleapis.com/v1beta"


class CaptionGenerator(Protocol):
    async def generate(
        self,
        habit_title: str,
        category_name: str,
        occurrence: str,
        notes: str | None = None,
    ) -> str: ...


def build_prompt(
    habit_title: str, category_name: str, occurrence: str, notes: str | None = None,
) -> str:
    lines = [
        "Write a short, motivational social media caption for someone who "
        "just completed a habit.",
        "",
        f"Habit: {habit_title}",
        f"Category: {category_name}",
        f"Frequency: {occurrence}",
    ]
    if notes:
        lines.append(f"Notes: {notes}")
    lines += [
        "",
        "Keep it under 100 characters, use at most 2-3 emojis and 1-2 hashtags, "
        "and make it sound personal rather than dramatic.",
    ]
    return "\n".join(lines)


class GeminiCaptionGenerator:
    """Calls the Generative Language REST API (``generateContent``)."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-pro",
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def generate(
        self,
        habit_title: str,
        category_name: str,
        occurrence: str,
        notes: str | None = None,
    ) -> str:
        prompt = build_prompt(habit_title, category_name, occurrence, notes)
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        async with httpx.AsyncClient(timeout=self.timeout, transport=transport) as client:
            resp = await client.post(
                f"{GEMINI_API}/models/{self.model}:generateContent",
                params={"key": self.api_key},
                json={"contents": [{"parts": [{"text": prompt}]}]},
            )
        resp.raise_for_status()
        data = resp.json()
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts).strip()


class StaticCaptionGenerator:
    """Generator used when no API key is configured — always defers to the fallback."""

    async def generate(
        self,
        habit_title: str,
        category_name: str,
        occurrence: str,
        notes: str | None = None,
    ) -> str:
        return ""


def build_caption_generator(cfg: HabitatConfig) -> CaptionGenerator:
    """Pick the generator for this deployment from ``GEMINI_API_KEY``."""
    api_key = os.getenv("GEMINI_API_KEY", "").strip()
    if not api_key:
        logger.info("GEMINI_API_KEY not set — captions use the fallback text")
        return StaticCaptionGenerator()
    return GeminiCaptionGenerator(
        api_key, cfg.caption_model, timeout=cfg.caption_timeout_seconds,
    )


async def caption_with_fallback(
    generator: CaptionGenerator | None,
    *,
    habit_title: str,
    category_name: str,
    occurrence: str,
    notes: str | None = None,
    timeout: float = 8.0,
) -> str:
    """Return a caption, never raising.

    Errors, timeouts and blank output all yield
    :func:`habitat.constants.fallback_caption`.
    """
    fallback = constants.fallback_caption(habit_title, category_name)
    if generator is None:
        return fallback

    try:
        caption = await asyncio.wait_for(
            generator.generate(habit_title, category_name, occurrence, notes),
            timeout=timeout,
        )
    except TimeoutError:
        logger.warning(
            "Caption generation timed out after %.1fs for %r", timeout, habit_title,
        )
        return fallback
    except Exception:
        logger.exception("Caption generation failed for %r", habit_title)
        return fallback

    caption = (caption or "").strip()
    if not caption:
        return fallback
    logger.debug("Caption generated for %r: %s", habit_title, caption)
    return caption
