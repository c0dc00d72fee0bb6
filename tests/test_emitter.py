"""Tests for LifecycleEmitter — fire-and-forget listener dispatch."""

from __future__ import annotations

import asyncio

from emupool.device.emitter import BOOT_DEVICE, SHUTDOWN_DEVICE, LifecycleEmitter


class TestEmit:
    async def test_async_and_sync_listeners_receive_payload(self):
        emitter = LifecycleEmitter()
        received = []

        async def async_listener(payload):
            received.append(("async", payload))

        emitter.on(BOOT_DEVICE, async_listener)
        emitter.on(BOOT_DEVICE, lambda payload: received.append(("sync", payload)))

        emitter.emit(BOOT_DEVICE, {"cold_boot": True, "device_id": "emulator-5554"})
        await emitter.drain()

        assert sorted(kind for kind, _ in received) == ["async", "sync"]
        assert all(p == {"cold_boot": True, "device_id": "emulator-5554"} for _, p in received)

    async def test_emit_does_not_wait_for_slow_listener(self):
        emitter = LifecycleEmitter()
        release = asyncio.Event()
        finished = []

        async def slow(payload):
            await release.wait()
            finished.append(payload["device_id"])

        emitter.on(SHUTDOWN_DEVICE, slow)
        emitter.emit(SHUTDOWN_DEVICE, {"device_id": "emulator-5554"})
        assert finished == []

        release.set()
        await emitter.drain()
        assert finished == ["emulator-5554"]

    async def test_failing_listener_is_isolated(self):
        emitter = LifecycleEmitter()
        received = []

        def broken(payload):
            raise RuntimeError("observer blew up")

        emitter.on(BOOT_DEVICE, broken)
        emitter.on(BOOT_DEVICE, received.append)

        emitter.emit(BOOT_DEVICE, {"device_id": "emulator-5554"})
        await emitter.drain()
        assert received == [{"device_id": "emulator-5554"}]

    async def test_emit_without_listeners_is_noop(self):
        emitter = LifecycleEmitter()
        emitter.emit(BOOT_DEVICE, {"device_id": "emulator-5554"})
        await emitter.drain()

    async def test_off_removes_listener(self):
        emitter = LifecycleEmitter()
        received = []
        emitter.on(BOOT_DEVICE, received.append)
        emitter.off(BOOT_DEVICE, received.append)
        emitter.off(BOOT_DEVICE, received.append)

        emitter.emit(BOOT_DEVICE, {"device_id": "emulator-5554"})
        await emitter.drain()
        assert received == []
