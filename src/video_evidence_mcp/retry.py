"""Exponential backoff for transient upload and inference errors."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .config import get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_MARKERS: tuple[str, ...] = (
    "429",
    "quota",
    "resource_exhausted",
    "timeout",
    "503",
    "unavailable",
)


def is_transient(exc: Exception) -> bool:
    """True when the exception text matches a known transient failure."""
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    msg = str(exc).lower()
    return any(marker in msg for marker in TRANSIENT_MARKERS)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number ``attempt`` (0-based), jittered and capped."""
    return min(base * (2 ** attempt) + random.random(), cap)


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    *,
    label: str = "call",
) -> T:
    """Await a fresh coroutine from *coro_factory*, retrying transient failures.

    Args:
        coro_factory: Zero-arg callable returning a new awaitable per attempt.
        label: Short name used in retry log lines.

    Returns:
        The result of the first successful attempt.

    Raises:
        The last exception once attempts run out or a non-transient error occurs.
    """
    cfg = get_config()
    attempts = cfg.retry_max_attempts
    for attempt in range(attempts):
        try:
            return await coro_factory()
        except Exception as exc:
            if attempt == attempts - 1 or not is_transient(exc):
                raise
            delay = backoff_delay(attempt, cfg.retry_base_delay, cfg.retry_max_delay)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt + 1, attempts, delay, exc,
            )
            await asyncio.sleep(delay)
    raise RuntimeError(f"{label}: retry loop exited without a result")
