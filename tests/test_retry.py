"""Tests for emupool.device.retry — bounded fixed-interval retry."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from emupool.device.retry import retry


class NotYet(Exception):
    pass


class TestRetry:
    async def test_returns_first_success(self):
        func = AsyncMock(return_value="ready")
        sleep = AsyncMock()
        assert await retry(func, retries=5, interval=1.0, sleep=sleep) == "ready"
        assert func.await_count == 1
        sleep.assert_not_awaited()

    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[NotYet(), NotYet(), "ok"])
        sleep = AsyncMock()
        result = await retry(func, retries=5, interval=2.5, retry_on=(NotYet,), sleep=sleep)
        assert result == "ok"
        assert func.await_count == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(2.5)

    async def test_exhaustion_reraises_last_error(self):
        errors = [NotYet(f"attempt {i}") for i in range(1, 4)]
        func = AsyncMock(side_effect=errors)
        sleep = AsyncMock()
        with pytest.raises(NotYet, match="attempt 3"):
            await retry(func, retries=3, interval=1.0, retry_on=(NotYet,), sleep=sleep)
        assert func.await_count == 3
        # No sleep after the final attempt
        assert sleep.await_count == 2

    async def test_unlisted_exception_propagates_immediately(self):
        func = AsyncMock(side_effect=RuntimeError("broken"))
        sleep = AsyncMock()
        with pytest.raises(RuntimeError, match="broken"):
            await retry(func, retries=10, interval=1.0, retry_on=(NotYet,), sleep=sleep)
        assert func.await_count == 1
        sleep.assert_not_awaited()

    async def test_constant_interval(self):
        func = AsyncMock(side_effect=[NotYet()] * 4 + [None])
        sleep = AsyncMock()
        await retry(func, retries=5, interval=5.0, retry_on=(NotYet,), sleep=sleep)
        assert [c.args[0] for c in sleep.await_args_list] == [5.0] * 4

    async def test_zero_retries_rejected(self):
        with pytest.raises(ValueError):
            await retry(AsyncMock(), retries=0, interval=1.0)
