"""Server configuration and Android SDK location helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger("emu-pool.config")

CONFIG_DIR = Path.home() / ".emupool"
USER_CONFIG_FILE = CONFIG_DIR / "config.json"
LOG_DIR = CONFIG_DIR / "logs"


@dataclass
class ServerConfig:
    """Configuration for the emu-pool HTTP server."""

    host: str = "127.0.0.1"
    port: int = 9200


@dataclass
class EmulatorOptions:
    """Flags passed to the emulator binary on cold boot."""

    headless: bool = False
    gpu: str | None = None
    read_only: bool = False
    extra_args: tuple[str, ...] = ()


def read_user_config() -> dict:
    """Read user config from ~/.emupool/config.json. Returns {} if missing or invalid."""
    if not USER_CONFIG_FILE.exists():
        return {}
    try:
        return json.loads(USER_CONFIG_FILE.read_text())
    except Exception as e:
        logger.warning("Failed to read config file %s: %s", USER_CONFIG_FILE, e)
        return {}


def get_android_sdk_root() -> Path | None:
    """Return the Android SDK root, or None if it cannot be determined.

    Priority:
    1. ``android_sdk_root`` in ~/.emupool/config.json
    2. ANDROID_SDK_ROOT
    3. ANDROID_HOME (deprecated, still common on CI images)
    """
    configured = read_user_config().get("android_sdk_root")
    if configured:
        return Path(configured).expanduser()
    for var in ("ANDROID_SDK_ROOT", "ANDROID_HOME"):
        value = os.environ.get(var)
        if value:
            return Path(value).expanduser()
    return None


def get_avd_home() -> Path:
    """Return the directory holding <name>.avd/ profile directories."""
    value = os.environ.get("ANDROID_AVD_HOME")
    if value:
        return Path(value).expanduser()
    return Path.home() / ".android" / "avd"


def get_emulator_options() -> EmulatorOptions:
    """Build EmulatorOptions from the ``emulator`` section of the user config.

    Unknown keys are ignored. ``extra_args`` accepts a list of strings.
    """
    section = read_user_config().get("emulator") or {}
    if not isinstance(section, dict):
        logger.warning("Ignoring non-object 'emulator' section in %s", USER_CONFIG_FILE)
        return EmulatorOptions()

    extra = section.get("extra_args") or []
    if not isinstance(extra, list):
        extra = []
    return EmulatorOptions(
        headless=bool(section.get("headless", False)),
        gpu=section.get("gpu") or None,
        read_only=bool(section.get("read_only", False)),
        extra_args=tuple(str(a) for a in extra if a),
    )
