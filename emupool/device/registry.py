"""DeviceRegistry — exclusive emulator allocation shared across worker processes."""

from __future__ import annotations

import asyncio
import fcntl
import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from emupool.config import CONFIG_DIR
from emupool.models import DeviceError, RegistryEntry, RegistryState

logger = logging.getLogger("emu-pool.registry")

REGISTRY_FILE = CONFIG_DIR / "device-registry.json"
CLAIM_ATTEMPTS = 5
STALE_CLAIM_CHECK_INTERVAL = 30.0  # seconds


class DeviceHooks(Protocol):
    """What the registry needs from whoever owns the devices."""

    async def lookup_existing(self, profile_name: str) -> str | None:
        """Return a running, unheld device for ``profile_name``, or None."""
        ...

    async def mint_new(self, profile_name: str) -> str:
        """Create an identifier for a device that has not been started yet."""
        ...

    def discard(self, device_id: str) -> None:
        """Forget an id from ``mint_new`` that the registry did not record."""
        ...


class DeviceRegistry:
    """Tracks which emulators are held, in a JSON file guarded by flock.

    The hooks run outside the file lock. The chosen id is re-checked under
    the lock, and the lookup starts over when another registry on the same
    file claimed it first. The file lock is never held across an await.
    """

    def __init__(self, hooks: DeviceHooks, registry_file: Path | None = None) -> None:
        self.hooks = hooks
        self._registry_file = registry_file or REGISTRY_FILE
        self._registry_file.parent.mkdir(parents=True, exist_ok=True)
        # Serializes callers of this instance; other instances race through _claim
        self._mutex = asyncio.Lock()

    # ----------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------

    async def get_device(self, profile_name: str, owner_pid: int | None = None) -> str:
        """Allocate a device for ``profile_name`` and mark it busy.

        Reuses a running idle emulator when the hooks find one, otherwise
        mints a new identifier. The claim is recorded for ``owner_pid``,
        defaulting to this process.

        Raises:
            DeviceError: The hooks kept returning ids that were already held
        """
        owner_pid = owner_pid or os.getpid()
        async with self._mutex:
            for attempt in range(1, CLAIM_ATTEMPTS + 1):
                device_id = await self.hooks.lookup_existing(profile_name)
                minted = device_id is None
                if minted:
                    device_id = await self.hooks.mint_new(profile_name)

                try:
                    holder = self._claim(device_id, profile_name, owner_pid)
                except Exception:
                    if minted:
                        self.hooks.discard(device_id)
                    raise

                if holder is None:
                    if minted:
                        logger.info("Minted new device %s for %s", device_id, profile_name)
                    else:
                        logger.info("Reusing running device %s for %s", device_id, profile_name)
                    return device_id

                if minted:
                    self.hooks.discard(device_id)
                logger.info(
                    "Device %s was claimed by pid %d first, retrying (%d/%d)",
                    device_id, holder, attempt, CLAIM_ATTEMPTS,
                )

        raise DeviceError(
            f"Device {device_id} is already held by pid {holder}, "
            f"gave up after {CLAIM_ATTEMPTS} attempts",
            tool="registry",
        )

    def is_busy(self, device_id: str) -> bool:
        return device_id in self._read_state().devices

    def busy_devices(self) -> list[RegistryEntry]:
        return list(self._read_state().devices.values())

    async def release_device(self, device_id: str) -> None:
        """Mark a device as free again. Unknown ids are ignored with a warning."""
        async with self._mutex:
            with self._lock_registry_file():
                state = self._read_state()
                if state.devices.pop(device_id, None) is None:
                    logger.warning("Device %s was not held, ignoring release", device_id)
                    return
                state.updated_at = datetime.now(timezone.utc)
                self._write_state(state)
                logger.info("Device released: %s", device_id)

    async def cleanup_stale_claims(self) -> list[str]:
        """Release devices whose owning process is gone. Returns released ids."""
        async with self._mutex:
            with self._lock_registry_file():
                state = self._read_state()
                released = []
                for device_id, entry in list(state.devices.items()):
                    if not _pid_alive(entry.pid):
                        logger.warning(
                            "Released device %s (%s) - owner pid %d is gone",
                            device_id, entry.profile_name, entry.pid,
                        )
                        del state.devices[device_id]
                        released.append(device_id)

                if released:
                    state.updated_at = datetime.now(timezone.utc)
                    self._write_state(state)
                return released

    # ----------------------------------------------------------------
    # Internal helpers
    # ----------------------------------------------------------------

    def _claim(self, device_id: str, profile_name: str, owner_pid: int) -> int | None:
        """Record ``device_id`` as held. Returns the holder's pid if it already is."""
        with self._lock_registry_file():
            state = self._read_state()
            if device_id in state.devices:
                return state.devices[device_id].pid
            now = datetime.now(timezone.utc)
            state.devices[device_id] = RegistryEntry(
                device_id=device_id,
                profile_name=profile_name,
                pid=owner_pid,
                claimed_at=now,
            )
            state.updated_at = now
            self._write_state(state)
            return None

    def _read_state(self) -> RegistryState:
        """Read registry state from disk."""
        if not self._registry_file.exists():
            return RegistryState(updated_at=datetime.now(timezone.utc))

        try:
            data = json.loads(self._registry_file.read_text())
            return RegistryState.model_validate(data)
        except Exception as e:
            logger.error("Failed to parse registry file: %s", e)
            return RegistryState(updated_at=datetime.now(timezone.utc))

    def _write_state(self, state: RegistryState) -> None:
        self._registry_file.write_text(state.model_dump_json(indent=2))

    @contextmanager
    def _lock_registry_file(self):
        """Context manager for exclusive cross-process file locking."""
        lock_file = self._registry_file.with_suffix(".lock")
        lock_file.touch(exist_ok=True)

        with open(lock_file, "r") as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def stale_claim_watchdog(
    registry: DeviceRegistry,
    check_interval: float = STALE_CLAIM_CHECK_INTERVAL,
) -> None:
    """Periodically release claims whose owner process has exited.

    Runs until cancelled. Claims recorded without the worker's own pid carry
    the server's pid and stay held until the worker releases them.
    """
    while True:
        await asyncio.sleep(check_interval)
        try:
            released = await registry.cleanup_stale_claims()
        except OSError as e:
            logger.warning("Stale claim check failed: %s", e)
            continue
        if released:
            logger.info("Released %d stale device claims", len(released))
