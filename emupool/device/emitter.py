"""LifecycleEmitter — best-effort, non-blocking device lifecycle notifications."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("emu-pool.emitter")

Listener = Callable[[dict[str, Any]], Any]

BOOT_DEVICE = "boot_device"
BEFORE_SHUTDOWN_DEVICE = "before_shutdown_device"
SHUTDOWN_DEVICE = "shutdown_device"


class LifecycleEmitter:
    """Dispatches events to listeners without making the emitter wait.

    ``emit`` schedules one task per listener and returns immediately, so a
    slow or failing listener never stalls or fails device acquisition.
    Delivery is not guaranteed: tasks still pending when the loop stops are
    dropped.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Schedule ``event`` for every listener. Must be called from a running loop."""
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            return
        for listener in listeners:
            task = asyncio.create_task(self._deliver(event, listener, dict(payload)))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for all in-flight deliveries."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @staticmethod
    async def _deliver(event: str, listener: Listener, payload: dict[str, Any]) -> None:
        try:
            result = listener(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Listener %r for %s failed", listener, event, exc_info=True)
