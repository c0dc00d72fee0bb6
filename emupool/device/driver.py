"""EmulatorDriver — acquires, boots, primes and shuts down emulators."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from pathlib import Path

from emupool.device.adb import AdbBackend
from emupool.device.console import EmulatorConsole
from emupool.device.emitter import (
    BEFORE_SHUTDOWN_DEVICE,
    BOOT_DEVICE,
    SHUTDOWN_DEVICE,
    LifecycleEmitter,
)
from emupool.device.emulator import EmulatorBackend
from emupool.device.profiles import ProfileStore, ProfileValidator
from emupool.device.registry import DeviceRegistry
from emupool.device.retry import retry
from emupool.models import BootTimeoutError, DeviceNotReadyError, MalformedDeviceIdError

logger = logging.getLogger("emu-pool.driver")

EMULATOR_PORT_MIN = 10000
EMULATOR_PORT_MAX = 20000  # exclusive
DEVICE_ID_PREFIX = "emulator"
BOOT_POLL_RETRIES = 120
BOOT_POLL_INTERVAL = 5.0  # seconds; 120 x 5s = 10 minute ceiling


def parse_console_port(device_id: str) -> int:
    """Extract the console port from an ``emulator-<port>`` identifier.

    Raises MalformedDeviceIdError for anything that is not exactly ``<tag>-<digits>``.
    """
    parts = device_id.split("-")
    if len(parts) != 2 or not parts[1].isdigit():
        raise MalformedDeviceIdError(
            f"Malformed emulator id {device_id!r}, expected '{DEVICE_ID_PREFIX}-<port>'"
        )
    return int(parts[1])


class EmulatorDriver:
    """Maps AVD names to exclusively held, booted emulators.

    The driver is the registry's DeviceHooks: the registry calls back into
    ``lookup_existing``/``mint_new`` to pick a device, and ``discard`` for a
    minted id it did not record. Newly minted ids are kept in
    ``pending_boots`` (id -> console port) until the emulator has been told
    to start; an id found there on acquisition means cold boot.
    """

    def __init__(
        self,
        adb: AdbBackend | None = None,
        emulator: EmulatorBackend | None = None,
        registry_file: Path | None = None,
        avd_home: Path | None = None,
        sdk_root: Path | None = None,
        emitter: LifecycleEmitter | None = None,
        console_factory: Callable[[], EmulatorConsole] = EmulatorConsole,
    ) -> None:
        self.adb = adb or AdbBackend()
        self.emulator = emulator or EmulatorBackend()
        self.emitter = emitter or LifecycleEmitter()
        self.validator = ProfileValidator(ProfileStore(self.emulator, avd_home), sdk_root=sdk_root)
        self.registry = DeviceRegistry(hooks=self, registry_file=registry_file)
        self.console_factory = console_factory
        self.pending_boots: dict[str, int] = {}
        self._sleep = asyncio.sleep

    # ----------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------

    async def acquire_free_device(self, avd_name: str, owner_pid: int | None = None) -> str:
        """Return the adb name of a booted emulator held for this caller.

        ``owner_pid`` is recorded as the holder (default: this process).
        Any failure after the registry handed out a device releases it again,
        so a retry starts from a clean slate.
        """
        await self.validator.validate(avd_name)
        await self.validator.repair_skin_if_missing(avd_name)

        device_id = await self.registry.get_device(avd_name, owner_pid=owner_pid)
        try:
            await self._boot_if_needed(avd_name, device_id)
            await self.adb.api_level(device_id)
            await self.adb.unlock_screen(device_id)
        except Exception:
            logger.warning("Acquisition of %s (%s) failed, releasing it", device_id, avd_name)
            await self.registry.release_device(device_id)
            raise

        logger.info("Acquired %s for %s", device_id, avd_name)
        return device_id

    async def release_device(self, device_id: str) -> None:
        await self.registry.release_device(device_id)

    async def shutdown(self, device_id: str) -> None:
        """Kill an emulator through its console. Not idempotent."""
        self.emitter.emit(BEFORE_SHUTDOWN_DEVICE, {"device_id": device_id})
        port = parse_console_port(device_id)

        async with self.console_factory() as console:
            await console.connect(port)
            await console.kill()

        self.emitter.emit(SHUTDOWN_DEVICE, {"device_id": device_id})
        logger.info("Shut down %s", device_id)

    # ----------------------------------------------------------------
    # Registry hooks
    # ----------------------------------------------------------------

    async def lookup_existing(self, profile_name: str) -> str | None:
        """Find a running emulator of ``profile_name`` that nobody holds."""
        device = await self.adb.find_device(
            lambda candidate: (
                candidate.name == profile_name
                and not self.registry.is_busy(candidate.adb_name)
            )
        )
        if device is None:
            return None
        return device.adb_name

    async def mint_new(self, profile_name: str) -> str:
        """Draw an even console port and record the id as pending boot.

        Ports held in the registry are redrawn; the registry is the only
        authority on which ids are taken.
        """
        while True:
            port = random.randrange(EMULATOR_PORT_MIN, EMULATOR_PORT_MAX) & ~1
            device_id = f"{DEVICE_ID_PREFIX}-{port}"
            if not self.registry.is_busy(device_id):
                break
        self.pending_boots[device_id] = port
        return device_id

    def discard(self, device_id: str) -> None:
        self.pending_boots.pop(device_id, None)

    # ----------------------------------------------------------------
    # Internal helpers
    # ----------------------------------------------------------------

    async def _boot_if_needed(self, avd_name: str, device_id: str) -> None:
        cold_boot = device_id in self.pending_boots

        if cold_boot:
            try:
                await self.emulator.boot(avd_name, port=self.pending_boots[device_id])
            finally:
                del self.pending_boots[device_id]

        await self._wait_for_boot_to_complete(device_id)
        self.emitter.emit(BOOT_DEVICE, {"cold_boot": cold_boot, "device_id": device_id})

    async def _wait_for_boot_to_complete(self, device_id: str) -> None:
        async def check() -> None:
            if not await self.adb.is_boot_complete(device_id):
                raise DeviceNotReadyError(f"Android device {device_id} has not completed its boot yet.")

        try:
            await retry(
                check,
                retries=BOOT_POLL_RETRIES,
                interval=BOOT_POLL_INTERVAL,
                retry_on=(DeviceNotReadyError,),
                sleep=self._sleep,
            )
        except DeviceNotReadyError as e:
            raise BootTimeoutError(
                f"Android device {device_id} did not complete its boot within "
                f"{BOOT_POLL_RETRIES * BOOT_POLL_INTERVAL:.0f}s ({BOOT_POLL_RETRIES} checks)"
            ) from e
        logger.info("Device %s boot complete", device_id)
