"""Bounded fixed-interval retry for polling device state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger("emu-pool.retry")

T = TypeVar("T")


async def retry(
    func: Callable[[], Awaitable[T]],
    *,
    retries: int,
    interval: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> T:
    """Call ``func`` until it succeeds or ``retries`` attempts have been made.

    Exceptions matching ``retry_on`` are swallowed and followed by a constant
    ``interval``-second sleep; the exception from the final attempt is
    re-raised. Anything else propagates immediately.
    """
    if retries < 1:
        raise ValueError(f"retries must be >= 1, got {retries}")
    sleep = sleep or asyncio.sleep

    for attempt in range(1, retries + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt == retries:
                raise
            logger.debug("Attempt %d/%d failed: %s", attempt, retries, e)
            await sleep(interval)

    raise AssertionError("unreachable")
