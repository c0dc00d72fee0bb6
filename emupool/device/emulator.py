"""EmulatorBackend — lists AVDs and spawns emulator processes."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from emupool.config import LOG_DIR, EmulatorOptions, get_android_sdk_root, get_emulator_options
from emupool.models import DeviceError

logger = logging.getLogger("emu-pool.emulator")

STARTUP_GRACE_PERIOD = 3.0  # seconds an emulator must survive after spawn
LOG_TAIL_LINES = 20


class EmulatorBackend:
    """Wraps the SDK's ``emulator`` binary."""

    def __init__(
        self,
        binary: str | None = None,
        options: EmulatorOptions | None = None,
        log_dir: Path | None = None,
    ) -> None:
        self._binary = binary
        self._options = options
        self.log_dir = log_dir or LOG_DIR

    @property
    def options(self) -> EmulatorOptions:
        if self._options is None:
            self._options = get_emulator_options()
        return self._options

    def _find_binary(self) -> str:
        """Locate the emulator binary: SDK emulator/ dir first, then PATH.

        The SDK also ships a legacy tools/emulator wrapper that cannot boot
        modern images, so emulator/emulator wins when both exist.
        """
        if self._binary is not None:
            return self._binary
        sdk_root = get_android_sdk_root()
        if sdk_root is not None:
            candidate = sdk_root / "emulator" / "emulator"
            if candidate.exists():
                self._binary = str(candidate)
                return self._binary
        found = shutil.which("emulator")
        if not found:
            raise DeviceError(
                "emulator binary not found. Set ANDROID_SDK_ROOT or install the SDK emulator package.",
                tool="emulator",
            )
        self._binary = found
        return self._binary

    async def list_avds(self) -> list[str]:
        """Return the names of installed AVDs.

        The binary may print INFO/WARNING chatter before the list; AVD names
        never contain whitespace, so any line that does is skipped.
        """
        proc = await asyncio.create_subprocess_exec(
            self._find_binary(), "-list-avds",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise DeviceError(
                f"emulator -list-avds failed: {stderr.decode().strip()}",
                tool="emulator",
            )
        names = []
        for line in stdout.decode().splitlines():
            line = line.strip()
            if line and len(line.split()) == 1:
                names.append(line)
        return names

    def build_boot_args(self, avd_name: str, port: int) -> list[str]:
        """Build the emulator command line for a cold boot on ``port``."""
        opts = self.options
        args = [
            self._find_binary(),
            "-verbose",
            "-no-audio",
            "-no-boot-anim",
            "-port", str(port),
        ]
        if opts.headless:
            args.append("-no-window")
        if opts.gpu:
            args.extend(["-gpu", opts.gpu])
        if opts.read_only:
            args.append("-read-only")
        args.extend(opts.extra_args)
        args.append(f"@{avd_name}")
        return args

    async def boot(self, avd_name: str, port: int) -> asyncio.subprocess.Process:
        """Spawn a detached emulator for ``avd_name`` listening on ``port``.

        Output goes to a per-instance log file. Returns once the process has
        survived the startup grace period; boot completion is the caller's
        concern.

        Raises DeviceError if the process exits during the grace period.
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_dir / f"{avd_name}-{port}.log"
        args = self.build_boot_args(avd_name, port)
        logger.info("Starting emulator %s on port %d (log: %s)", avd_name, port, log_path)

        with open(log_path, "ab") as log_file:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log_file,
                stderr=log_file,
                start_new_session=True,
            )

        try:
            await asyncio.wait_for(proc.wait(), timeout=STARTUP_GRACE_PERIOD)
        except asyncio.TimeoutError:
            return proc

        raise DeviceError(
            f"Emulator {avd_name} exited with code {proc.returncode} during startup:\n"
            f"{self._tail(log_path)}",
            tool="emulator",
        )

    @staticmethod
    def _tail(path: Path, lines: int = LOG_TAIL_LINES) -> str:
        try:
            content = path.read_text(errors="replace").splitlines()
        except OSError:
            return ""
        return "\n".join(content[-lines:])
