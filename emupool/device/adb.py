"""AdbBackend — async wrapper around the adb CLI for emulator queries."""

from __future__ import annotations

import asyncio
import inspect
import logging
import shutil
from collections.abc import Awaitable, Callable

from emupool.config import get_android_sdk_root
from emupool.models import DeviceError, EmulatorCandidate

logger = logging.getLogger("emu-pool.adb")

KEYCODE_MENU = 82
KEYCODE_WAKEUP = 224

CandidatePredicate = Callable[[EmulatorCandidate], bool | Awaitable[bool]]


class AdbBackend:
    """Queries running emulators via adb subprocess calls."""

    def __init__(self, binary: str | None = None) -> None:
        self._binary = binary

    def _find_binary(self) -> str:
        """Locate adb: SDK platform-tools first, then PATH. Cached."""
        if self._binary is not None:
            return self._binary
        sdk_root = get_android_sdk_root()
        if sdk_root is not None:
            candidate = sdk_root / "platform-tools" / "adb"
            if candidate.exists():
                self._binary = str(candidate)
                return self._binary
        found = shutil.which("adb")
        if not found:
            raise DeviceError(
                "adb not found. Set ANDROID_SDK_ROOT or put platform-tools on PATH.",
                tool="adb",
            )
        self._binary = found
        return self._binary

    async def _run_adb(self, *args: str) -> str:
        """Run an adb command and return stdout.

        Raises DeviceError on non-zero exit code.
        """
        proc = await asyncio.create_subprocess_exec(
            self._find_binary(), *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise DeviceError(
                f"adb {' '.join(args)} failed: {stderr.decode().strip()}",
                tool="adb",
            )
        return stdout.decode()

    async def is_available(self) -> bool:
        try:
            self._find_binary()
        except DeviceError:
            return False
        return True

    async def shell(self, serial: str, command: str) -> str:
        """Run a shell command on the device and return its stripped output."""
        output = await self._run_adb("-s", serial, "shell", command)
        return output.strip()

    async def list_devices(self) -> list[EmulatorCandidate]:
        """List emulators known to the adb server.

        Physical devices are skipped; their serials do not start with
        ``emulator-``.
        """
        output = await self._run_adb("devices")
        return self._parse_devices(output)

    @staticmethod
    def _parse_devices(output: str) -> list[EmulatorCandidate]:
        """Parse ``adb devices`` output.

        e.g. 'emulator-5554\\tdevice' -> EmulatorCandidate(adb_name='emulator-5554')
        """
        devices: list[EmulatorCandidate] = []
        for line in output.splitlines():
            line = line.strip()
            if not line or line.startswith("List of devices") or line.startswith("*"):
                continue
            parts = line.split()
            if len(parts) < 2 or not parts[0].startswith("emulator-"):
                continue
            devices.append(EmulatorCandidate(adb_name=parts[0], status=parts[1]))
        return devices

    async def get_avd_name(self, serial: str) -> str:
        """Return the AVD name a running emulator was started from.

        ``adb emu avd name`` prints the name followed by an ``OK`` line.
        """
        output = await self._run_adb("-s", serial, "emu", "avd", "name")
        for line in output.splitlines():
            line = line.strip()
            if line and line != "OK":
                return line
        return ""

    async def find_device(self, predicate: CandidatePredicate) -> EmulatorCandidate | None:
        """Return the first running emulator matching ``predicate``, or None.

        ``predicate`` may be a plain function or a coroutine function.
        """
        for candidate in await self.list_devices():
            try:
                candidate.name = await self.get_avd_name(candidate.adb_name)
            except DeviceError as e:
                logger.debug("Skipping %s: %s", candidate.adb_name, e)
                continue
            matched = predicate(candidate)
            if inspect.isawaitable(matched):
                matched = await matched
            if matched:
                return candidate
        return None

    async def api_level(self, serial: str) -> int:
        """Return the device's Android API level."""
        output = await self.shell(serial, "getprop ro.build.version.sdk")
        try:
            return int(output)
        except ValueError:
            raise DeviceError(
                f"Unexpected API level from {serial}: {output!r}", tool="adb",
            ) from None

    async def unlock_screen(self, serial: str) -> None:
        """Wake the device and dismiss a swipe-only keyguard."""
        await self.shell(serial, f"input keyevent {KEYCODE_WAKEUP}")
        await self.shell(serial, f"input keyevent {KEYCODE_MENU}")

    async def is_boot_complete(self, serial: str) -> bool:
        """Check ``dev.bootcomplete``.

        adb failures count as not booted: a cold emulator is invisible or
        offline to adb for the first part of its boot.
        """
        try:
            output = await self.shell(serial, "getprop dev.bootcomplete")
        except DeviceError as e:
            logger.debug("Boot check on %s failed: %s", serial, e)
            return False
        return output == "1"
