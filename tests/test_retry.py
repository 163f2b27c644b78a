"""
Tests for retry.py.

Covers:
  - is_transient / is_transient_status classification
  - backoff_delay doubling
  - retry_with_backoff(): success, transient retry, non-transient passthrough,
    attempt ceiling, sleep schedule
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from retry import (
    TransientError,
    backoff_delay,
    is_transient,
    is_transient_status,
    retry_with_backoff,
)


# ── Classification ────────────────────────────────────────────────────────────

class TestIsTransient:
    def test_transient_error(self):
        assert is_transient(TransientError("slow down", status=429)) is True

    def test_connection_error(self):
        assert is_transient(aiohttp.ClientConnectionError("reset")) is True

    def test_timeout(self):
        assert is_transient(asyncio.TimeoutError()) is True

    def test_value_error_is_not_transient(self):
        assert is_transient(ValueError("bad input")) is False

    def test_plain_runtime_error_is_not_transient(self):
        assert is_transient(RuntimeError("boom")) is False

    def test_status_carried(self):
        assert TransientError("x", status=503).status == 503


class TestIsTransientStatus:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable(self, status):
        assert is_transient_status(status) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_not_retryable(self, status):
        assert is_transient_status(status) is False


class TestBackoffDelay:
    def test_doubles_each_attempt(self):
        assert [backoff_delay(n, 1.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_zero_base(self):
        assert backoff_delay(3, 0) == 0


# ── retry_with_backoff ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestRetryWithBackoff:
    async def test_first_attempt_success(self):
        op = AsyncMock(return_value="ok")
        assert await retry_with_backoff(op, attempts=3, base_delay=0) == "ok"
        assert op.await_count == 1

    async def test_transient_then_success(self):
        op = AsyncMock(side_effect=[TransientError("429"), TransientError("503"), "ok"])
        assert await retry_with_backoff(op, attempts=3, base_delay=0) == "ok"
        assert op.await_count == 3

    async def test_non_transient_raised_immediately(self):
        op = AsyncMock(side_effect=ValueError("bad"))
        with pytest.raises(ValueError):
            await retry_with_backoff(op, attempts=5, base_delay=0)
        assert op.await_count == 1

    async def test_last_transient_error_propagates(self):
        op = AsyncMock(side_effect=TransientError("still down"))
        with pytest.raises(TransientError, match="still down"):
            await retry_with_backoff(op, attempts=3, base_delay=0)
        assert op.await_count == 3

    async def test_zero_attempts_still_tries_once(self):
        op = AsyncMock(return_value=1)
        assert await retry_with_backoff(op, attempts=0, base_delay=0) == 1
        assert op.await_count == 1

    async def test_sleep_schedule_is_exponential(self):
        op = AsyncMock(side_effect=[TransientError("a"), TransientError("b"), "ok"])
        with patch("retry.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry_with_backoff(op, attempts=3, base_delay=0.5)
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    async def test_connection_error_is_retried(self):
        op = AsyncMock(side_effect=[aiohttp.ClientConnectionError("reset"), "ok"])
        assert await retry_with_backoff(op, attempts=2, base_delay=0) == "ok"
