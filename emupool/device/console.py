"""EmulatorConsole — line-oriented client for the emulator telnet console.

Every running emulator listens on its console port (the even number in its
``emulator-<port>`` serial). The session looks like::

    Android Console: Authentication required
    Android Console: type 'auth <auth_token>' to authenticate
    Android Console: you can find your <auth_token> in
    '/home/user/.emulator_console_auth_token'
    OK
    auth 5nU1...
    Android Console: type 'help' for a list of commands
    OK
    kill
    OK: killing emulator, bye bye

Replies end with a line starting with ``OK`` or ``KO:``.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from emupool.models import ControlChannelError

logger = logging.getLogger("emu-pool.console")

AUTH_TOKEN_FILE = Path.home() / ".emulator_console_auth_token"
CONSOLE_TIMEOUT = 10.0  # seconds per read/connect


class EmulatorConsole:
    """A single console session. Not reusable across ports; no reconnects."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        auth_token_file: Path | None = None,
        timeout: float = CONSOLE_TIMEOUT,
    ) -> None:
        self.host = host
        self.auth_token_file = auth_token_file or AUTH_TOKEN_FILE
        self.timeout = timeout
        self.port: int | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    async def __aenter__(self) -> EmulatorConsole:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def connect(self, port: int) -> None:
        """Open the session and authenticate if the emulator asks for it."""
        if self.connected:
            raise ControlChannelError(f"Console already connected to port {self.port}")
        self.port = port
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, port), timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ControlChannelError(
                f"Could not connect to emulator console on {self.host}:{port}: {e or type(e).__name__}"
            ) from e

        banner = await self._read_reply()
        if any("authentication required" in line.lower() for line in banner):
            await self._authenticate()
        logger.debug("Console connected on port %d", port)

    async def kill(self) -> None:
        """Ask the emulator to terminate."""
        await self._send("kill")
        try:
            await self._read_reply()
        except ControlChannelError as e:
            # The emulator may drop the socket before the reply is flushed
            if "closed" not in str(e):
                raise
        logger.info("Sent kill to emulator console on port %s", self.port)

    async def close(self) -> None:
        """Close the session. Safe to call more than once."""
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    # ----------------------------------------------------------------
    # Internal helpers
    # ----------------------------------------------------------------

    async def _authenticate(self) -> None:
        try:
            token = self.auth_token_file.read_text().strip()
        except OSError as e:
            raise ControlChannelError(
                f"Emulator console requires authentication but {self.auth_token_file} is unreadable: {e}"
            ) from e
        await self._send(f"auth {token}")
        await self._read_reply()

    async def _send(self, command: str) -> None:
        if self._writer is None:
            raise ControlChannelError("Console is not connected")
        try:
            self._writer.write(f"{command}\n".encode())
            await self._writer.drain()
        except OSError as e:
            raise ControlChannelError(f"Failed to send '{command}' to console port {self.port}: {e}") from e

    async def _read_reply(self) -> list[str]:
        """Read lines up to and including the OK/KO terminator.

        Returns the lines before the terminator. Raises on KO or EOF.
        """
        if self._reader is None:
            raise ControlChannelError("Console is not connected")
        lines: list[str] = []
        while True:
            try:
                raw = await asyncio.wait_for(self._reader.readline(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise ControlChannelError(f"Timed out waiting for console port {self.port}") from e
            except OSError as e:
                raise ControlChannelError(f"Console port {self.port} read failed: {e}") from e
            if not raw:
                raise ControlChannelError(f"Console port {self.port} closed the connection")

            line = raw.decode(errors="replace").strip()
            if line.startswith("OK"):
                return lines
            if line.startswith("KO"):
                raise ControlChannelError(f"Console port {self.port} rejected command: {line}")
            lines.append(line)
