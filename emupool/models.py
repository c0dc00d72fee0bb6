"""Core data models and exceptions for emulator allocation."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DeviceError(Exception):
    """Raised when a device operation fails.

    ``tool`` names the subsystem that failed (adb, emulator, registry, ...)
    so API error responses can say where the failure came from.
    """

    def __init__(self, message: str, tool: str = "unknown") -> None:
        super().__init__(message)
        self.tool = tool


class NoProfilesConfiguredError(DeviceError):
    """No AVD is installed on this machine."""

    def __init__(self, message: str) -> None:
        super().__init__(message, tool="avd")


class ProfileNotFoundError(DeviceError):
    """The requested AVD name is not among the installed AVDs."""

    def __init__(self, message: str) -> None:
        super().__init__(message, tool="avd")


class CorruptProfileConfigError(DeviceError):
    """An AVD's config.ini lacks the keys needed to repair it."""

    def __init__(self, message: str) -> None:
        super().__init__(message, tool="avd")


class DeviceNotReadyError(DeviceError):
    """Transient: the emulator has not finished booting yet."""

    def __init__(self, message: str) -> None:
        super().__init__(message, tool="adb")


class BootTimeoutError(DeviceError):
    """The emulator never reported boot complete within the polling budget."""

    def __init__(self, message: str) -> None:
        super().__init__(message, tool="adb")


class ControlChannelError(DeviceError):
    """The emulator console could not be reached or rejected a command."""

    def __init__(self, message: str) -> None:
        super().__init__(message, tool="console")


class MalformedDeviceIdError(DeviceError):
    """A device id is not of the form ``emulator-<port>``."""

    def __init__(self, message: str) -> None:
        super().__init__(message, tool="emulator")


# ---------------------------------------------------------------------------
# Device / registry models
# ---------------------------------------------------------------------------


class EmulatorCandidate(BaseModel):
    """A running emulator as seen by adb."""

    adb_name: str = Field(description="adb serial, e.g. 'emulator-5554'")
    name: str = Field(default="", description="AVD name the emulator was started from")
    status: str = Field(default="device", description="adb state: device, offline, unauthorized")


class RegistryEntry(BaseModel):
    """A device currently held by some worker."""

    device_id: str
    profile_name: str
    pid: int = Field(description="PID of the process that claimed the device")
    claimed_at: datetime


class RegistryState(BaseModel):
    """On-disk registry state (~/.emupool/device-registry.json)."""

    updated_at: datetime
    devices: dict[str, RegistryEntry] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# API request bodies
# ---------------------------------------------------------------------------


class AcquireDeviceRequest(BaseModel):
    avd_name: str = Field(min_length=1)
    # Pid of the worker process on this host; stale-claim cleanup watches it
    owner_pid: int | None = Field(default=None, gt=0)


class DeviceIdRequest(BaseModel):
    device_id: str = Field(min_length=1)
