"""Tests for AdbBackend — mock asyncio.create_subprocess_exec."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from emupool.device.adb import AdbBackend
from emupool.models import DeviceError, EmulatorCandidate


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
    """Create a mock async subprocess."""
    proc = AsyncMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.returncode = returncode
    return proc


@pytest.fixture
def backend():
    return AdbBackend(binary="adb")


ADB_DEVICES_OUTPUT = (
    b"* daemon not running; starting now at tcp:5037\n"
    b"* daemon started successfully\n"
    b"List of devices attached\n"
    b"emulator-5554\tdevice\n"
    b"emulator-15432\toffline\n"
    b"R58M123ABC\tdevice\n"
    b"\n"
)


# ---------------------------------------------------------------------------
# _run_adb
# ---------------------------------------------------------------------------


class TestRunAdb:
    async def test_success(self, backend):
        proc = _mock_proc(stdout=b"ok\n")
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            assert await backend._run_adb("devices") == "ok\n"
            mock_exec.assert_called_once_with("adb", "devices", stdout=-1, stderr=-1)

    async def test_nonzero_exit_raises(self, backend):
        proc = _mock_proc(stderr=b"error: device 'emulator-5554' not found", returncode=1)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(DeviceError, match="not found") as exc_info:
                await backend._run_adb("-s", "emulator-5554", "shell", "true")
        assert exc_info.value.tool == "adb"

    def test_missing_binary(self, monkeypatch):
        monkeypatch.setattr("emupool.device.adb.get_android_sdk_root", lambda: None)
        monkeypatch.setattr("emupool.device.adb.shutil.which", lambda name: None)
        with pytest.raises(DeviceError, match="adb not found"):
            AdbBackend()._find_binary()

    def test_prefers_sdk_platform_tools(self, monkeypatch, tmp_path):
        adb = tmp_path / "platform-tools" / "adb"
        adb.parent.mkdir()
        adb.touch()
        monkeypatch.setattr("emupool.device.adb.get_android_sdk_root", lambda: tmp_path)
        assert AdbBackend()._find_binary() == str(adb)


# ---------------------------------------------------------------------------
# Device listing
# ---------------------------------------------------------------------------


class TestListDevices:
    def test_parse_devices_keeps_emulators_only(self):
        devices = AdbBackend._parse_devices(ADB_DEVICES_OUTPUT.decode())
        assert devices == [
            EmulatorCandidate(adb_name="emulator-5554", status="device"),
            EmulatorCandidate(adb_name="emulator-15432", status="offline"),
        ]

    def test_parse_empty(self):
        assert AdbBackend._parse_devices("List of devices attached\n\n") == []

    async def test_list_devices(self, backend):
        with patch("asyncio.create_subprocess_exec", return_value=_mock_proc(stdout=ADB_DEVICES_OUTPUT)):
            devices = await backend.list_devices()
        assert [d.adb_name for d in devices] == ["emulator-5554", "emulator-15432"]

    async def test_get_avd_name(self, backend):
        proc = _mock_proc(stdout=b"Pixel_2_API_26\r\nOK\r\n")
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            assert await backend.get_avd_name("emulator-5554") == "Pixel_2_API_26"
        mock_exec.assert_called_once_with(
            "adb", "-s", "emulator-5554", "emu", "avd", "name", stdout=-1, stderr=-1,
        )


class TestFindDevice:
    @pytest.fixture
    def running(self, backend):
        backend.list_devices = AsyncMock(return_value=[
            EmulatorCandidate(adb_name="emulator-5554"),
            EmulatorCandidate(adb_name="emulator-5556"),
        ])
        names = {"emulator-5554": "Nexus_5X_API_29", "emulator-5556": "Pixel_2_API_26"}
        backend.get_avd_name = AsyncMock(side_effect=lambda serial: names[serial])
        return backend

    async def test_returns_first_match_with_name(self, running):
        device = await running.find_device(lambda c: c.name == "Pixel_2_API_26")
        assert device.adb_name == "emulator-5556"
        assert device.name == "Pixel_2_API_26"

    async def test_async_predicate(self, running):
        async def predicate(candidate):
            return candidate.adb_name == "emulator-5554"

        device = await running.find_device(predicate)
        assert device.name == "Nexus_5X_API_29"

    async def test_no_match(self, running):
        assert await running.find_device(lambda c: False) is None

    async def test_unreachable_emulator_skipped(self, running):
        running.get_avd_name = AsyncMock(side_effect=[DeviceError("offline", tool="adb"), "Pixel_2_API_26"])
        device = await running.find_device(lambda c: True)
        assert device.adb_name == "emulator-5556"


# ---------------------------------------------------------------------------
# Device queries
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_api_level(self, backend):
        with patch("asyncio.create_subprocess_exec", return_value=_mock_proc(stdout=b"26\r\n")) as mock_exec:
            assert await backend.api_level("emulator-5554") == 26
        mock_exec.assert_called_once_with(
            "adb", "-s", "emulator-5554", "shell", "getprop ro.build.version.sdk",
            stdout=-1, stderr=-1,
        )

    async def test_api_level_garbage_raises(self, backend):
        with patch("asyncio.create_subprocess_exec", return_value=_mock_proc(stdout=b"\n")):
            with pytest.raises(DeviceError, match="Unexpected API level"):
                await backend.api_level("emulator-5554")

    async def test_unlock_screen_sends_wake_then_menu(self, backend):
        backend.shell = AsyncMock(return_value="")
        await backend.unlock_screen("emulator-5554")
        assert [c.args for c in backend.shell.await_args_list] == [
            ("emulator-5554", "input keyevent 224"),
            ("emulator-5554", "input keyevent 82"),
        ]

    async def test_boot_complete_true(self, backend):
        with patch("asyncio.create_subprocess_exec", return_value=_mock_proc(stdout=b"1\n")):
            assert await backend.is_boot_complete("emulator-5554") is True

    async def test_boot_complete_empty_prop(self, backend):
        with patch("asyncio.create_subprocess_exec", return_value=_mock_proc(stdout=b"\n")):
            assert await backend.is_boot_complete("emulator-5554") is False

    async def test_boot_complete_adb_error_is_false(self, backend):
        proc = _mock_proc(stderr=b"error: device offline", returncode=1)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            assert await backend.is_boot_complete("emulator-5554") is False
