"""
retry.py — shared exponential backoff for every upstream call.

Catalog pages and image classification both go through retry_with_backoff().
Only transient failures are retried:

  • TransientError (and subclasses) — raised by our own clients for 429 / 5xx
  • aiohttp.ClientConnectionError   — DNS, refused, reset, server disconnected
  • asyncio.TimeoutError            — aiohttp total / read timeouts

Anything else (bad input, 4xx, parse errors, the catalog offset ceiling)
propagates on the first attempt.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientError(Exception):
    """A failure that is worth retrying: rate limiting, 5xx, network blips."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (TransientError, aiohttp.ClientConnectionError, asyncio.TimeoutError))


def is_transient_status(status: int) -> bool:
    """HTTP statuses we treat as retryable."""
    return status == 429 or status >= 500


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number *attempt* (1-based): base, 2×base, 4×base …"""
    return base_delay * (2 ** (attempt - 1))


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    label: str = "operation",
) -> T:
    """
    Await operation() up to *attempts* times.

    Non-transient errors propagate immediately. The last transient error
    propagates once the attempt ceiling is reached.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc) or attempt >= attempts:
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "%s failed (attempt %d/%d): %s — retrying in %.1fs",
                label, attempt, attempts, exc or type(exc).__name__, delay,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
