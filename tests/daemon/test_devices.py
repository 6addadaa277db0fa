"""Tests for device discovery, lookup and boot."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from fdash.daemon.devices import boot_device, discover_devices, find_device, parse_devices_output
from fdash.shared.exceptions import DeviceBootError, DeviceDiscoveryError
from fdash.shared.models import Device

DEVICES_JSON = """Waiting for another flutter command to release the startup lock...
[
  {"name": "Pixel 7", "id": "emulator-5554", "isSupported": true, "targetPlatform": "android-arm64",
   "emulator": true, "sdk": "Android 14", "emulatorId": "Pixel_7"},
  {"name": "macOS", "id": "macos", "isSupported": true, "targetPlatform": "darwin", "emulator": false}
]
"""


def _proc(stdout: bytes = b"", stderr: bytes = b"", rc: int = 0) -> AsyncMock:
    mock_proc = AsyncMock()
    mock_proc.communicate.return_value = (stdout, stderr)
    mock_proc.returncode = rc
    return mock_proc


class TestParseDevicesOutput:
    def test_ignores_banner(self) -> None:
        devices = parse_devices_output(DEVICES_JSON)

        assert [device.id for device in devices] == ["emulator-5554", "macos"]
        assert devices[0].emulator_id == "Pixel_7"

    def test_empty_list(self) -> None:
        assert parse_devices_output("[]") == []

    def test_skips_malformed_entries(self) -> None:
        devices = parse_devices_output('[{"name": "no id"}, {"id": "linux", "name": "Linux"}]')
        assert [device.id for device in devices] == ["linux"]

    def test_no_json(self) -> None:
        with pytest.raises(DeviceDiscoveryError, match="no device list"):
            parse_devices_output("No devices detected.")

    def test_invalid_json(self) -> None:
        with pytest.raises(DeviceDiscoveryError, match="invalid device json"):
            parse_devices_output("[{oops}]")


class TestFindDevice:
    def test_auto_picks_first(self, device_a: Device, device_b: Device) -> None:
        assert find_device([device_a, device_b], "auto") == device_a

    def test_by_id_then_name(self, device_a: Device, device_b: Device) -> None:
        assert find_device([device_a, device_b], "00008101-AAAA") == device_b
        assert find_device([device_a, device_b], "pixel") == device_a

    def test_no_match(self, device_a: Device) -> None:
        assert find_device([device_a], "windows") is None
        assert find_device([], "auto") is None


class TestDiscoverDevices:
    async def test_success(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(DEVICES_JSON.encode())) as spawn:
            devices = await discover_devices(flutter_bin="flutter", timeout=1.0)

        assert len(devices) == 2
        assert spawn.call_args.args == ("flutter", "devices", "--machine")

    async def test_non_zero_exit(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"", b"boom", rc=1)):
            with pytest.raises(DeviceDiscoveryError, match="rc=1"):
                await discover_devices()

    async def test_binary_not_found(self) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("flutter")):
            with pytest.raises(DeviceDiscoveryError, match="not found"):
                await discover_devices()

    async def test_timeout_kills(self) -> None:
        mock_proc = _proc()
        mock_proc.kill = lambda: setattr(mock_proc, "killed", True)

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        mock_proc.communicate.side_effect = hang
        with patch("asyncio.create_subprocess_exec", return_value=mock_proc):
            with pytest.raises(DeviceDiscoveryError, match="timed out"):
                await discover_devices(timeout=0.05)
        assert mock_proc.killed is True


class TestBootDevice:
    async def test_ios_boot(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc()) as spawn:
            await boot_device("SIM-UDID", "ios")

        assert spawn.call_args.args == ("xcrun", "simctl", "boot", "SIM-UDID")

    async def test_ios_already_booted(self) -> None:
        stderr = b"Unable to boot device in current state: Booted"
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"", stderr, rc=149)):
            await boot_device("SIM-UDID", "iOS")

    async def test_ios_failure(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"", b"Invalid device", rc=1)):
            with pytest.raises(DeviceBootError, match="Invalid device"):
                await boot_device("bad", "ios")

    async def test_android_emulator(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc()) as spawn:
            await boot_device("Pixel_7", "android")

        assert spawn.call_args.args == ("emulator", "-avd", "Pixel_7")
        assert spawn.call_args.kwargs["start_new_session"] is True

    async def test_unsupported_platform(self) -> None:
        with pytest.raises(DeviceBootError, match="linux"):
            await boot_device("linux", "linux")
