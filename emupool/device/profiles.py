"""AVD profile lookup, validation and config.ini repair."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from emupool.config import get_android_sdk_root, get_avd_home
from emupool.device.emulator import EmulatorBackend
from emupool.models import CorruptProfileConfigError, NoProfilesConfiguredError, ProfileNotFoundError

logger = logging.getLogger("emu-pool.profiles")

SKIN_NAME_KEY = "skin.name"
LCD_WIDTH_KEY = "hw.lcd.width"
LCD_HEIGHT_KEY = "hw.lcd.height"
AVD_DOCS_URL = "https://developer.android.com/studio/run/managing-avds.html"


def parse_config_ini(text: str) -> dict[str, str]:
    """Parse a flat ``key=value`` config.ini (AVD configs have no sections)."""
    config: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", ";")) or "=" not in line:
            continue
        key, value = line.split("=", 1)
        config[key.strip()] = value.strip()
    return config


def serialize_config_ini(config: dict[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in config.items())


class ProfileStore:
    """Installed AVDs and their on-disk config.ini files."""

    def __init__(self, emulator: EmulatorBackend, avd_home: Path | None = None) -> None:
        self.emulator = emulator
        self.avd_home = avd_home or get_avd_home()

    async def list_profiles(self) -> list[str]:
        return await self.emulator.list_avds()

    def config_path(self, name: str) -> Path:
        return self.avd_home / f"{name}.avd" / "config.ini"

    async def read_config(self, name: str) -> dict[str, str]:
        text = await _read_text(self.config_path(name))
        return parse_config_ini(text)

    async def write_config(self, name: str, config: dict[str, str]) -> None:
        await _write_text(self.config_path(name), serialize_config_ini(config))


class ProfileValidator:
    """Checks that an AVD exists and that its config.ini is bootable."""

    def __init__(self, store: ProfileStore, sdk_root: Path | None = None) -> None:
        self.store = store
        self._sdk_root = sdk_root

    async def validate(self, profile_name: str) -> None:
        """Raise unless ``profile_name`` is an installed AVD.

        Raises:
            NoProfilesConfiguredError: No AVD is installed at all
            ProfileNotFoundError: Other AVDs exist but not this one
        """
        avds = await self.store.list_profiles()
        if not avds:
            avdmanager = self._avdmanager_path()
            raise NoProfilesConfiguredError(
                "Could not find any configured Android Emulator.\n"
                f"Try creating a device first, example: {avdmanager} create avd --force "
                "--name Pixel_2_API_26 --abi x86 "
                "--package 'system-images;android-26;google_apis_playstore;x86' "
                '--device "Pixel 2"\n'
                f"or go to {AVD_DOCS_URL} for details on how to create an Emulator."
            )

        if profile_name not in avds:
            raise ProfileNotFoundError(
                f"Can not boot Android Emulator with the name: '{profile_name}', "
                f"make sure you choose one of the available emulators: {', '.join(avds)}"
            )

    async def repair_skin_if_missing(self, profile_name: str) -> dict[str, str]:
        """Add ``skin.name=<W>x<H>`` to config.ini when it is missing.

        The emulator crashes on some system images when skin.name is absent.
        Returns the (possibly repaired) config.

        Raises:
            CorruptProfileConfigError: skin.name and a screen dimension are
                both missing; the file is left untouched
        """
        try:
            config = await self.store.read_config(profile_name)
        except OSError as e:
            raise CorruptProfileConfigError(
                f"Could not read config.ini of emulator {profile_name}: {e}"
            ) from e
        if config.get(SKIN_NAME_KEY):
            return config

        width = config.get(LCD_WIDTH_KEY)
        height = config.get(LCD_HEIGHT_KEY)
        if width is None or height is None:
            raise CorruptProfileConfigError(
                f"Emulator with name {profile_name} has a corrupt config.ini file "
                f"({self.store.config_path(profile_name)}), try fixing it by recreating an emulator."
            )

        config[SKIN_NAME_KEY] = f"{width}x{height}"
        await self.store.write_config(profile_name, config)
        logger.info("Set %s=%s in config.ini of %s", SKIN_NAME_KEY, config[SKIN_NAME_KEY], profile_name)
        return config

    def _avdmanager_path(self) -> str:
        sdk_root = self._sdk_root or get_android_sdk_root()
        if sdk_root is None:
            return "$ANDROID_SDK_ROOT/tools/bin/avdmanager"
        return str(sdk_root / "tools" / "bin" / "avdmanager")


async def _read_text(path: Path) -> str:
    return await asyncio.to_thread(path.read_text)


async def _write_text(path: Path, text: str) -> None:
    await asyncio.to_thread(path.write_text, text)
