"""Device discovery and boot via the flutter and platform CLIs."""

from __future__ import annotations

import asyncio
import json
import logging

from pydantic import ValidationError

from fdash.shared.exceptions import DeviceBootError, DeviceDiscoveryError
from fdash.shared.models import Device

logger = logging.getLogger(__name__)


def parse_devices_output(output: str) -> list[Device]:
    """Parse ``flutter devices --machine`` output.

    Flutter may print banners or upgrade notices around the JSON array, so
    only the text between the first ``[`` and the last ``]`` is decoded.

    Raises:
        DeviceDiscoveryError: If no JSON array can be decoded.
    """
    start = output.find("[")
    end = output.rfind("]")
    if start == -1 or end < start:
        raise DeviceDiscoveryError("no device list in flutter output")
    try:
        raw_devices = json.loads(output[start : end + 1])
    except json.JSONDecodeError as exc:
        raise DeviceDiscoveryError(f"invalid device json: {exc}") from exc
    if not isinstance(raw_devices, list):
        raise DeviceDiscoveryError("device list is not a json array")

    devices: list[Device] = []
    for raw in raw_devices:
        try:
            devices.append(Device.model_validate(raw))
        except ValidationError as exc:
            logger.warning("skip malformed device entry %s: %s", raw, exc)
    return devices


def find_device(devices: list[Device], specifier: str) -> Device | None:
    """Resolve a device specifier; ``auto`` picks the first device."""
    if not devices:
        return None
    if specifier == "auto":
        return devices[0]
    for device in devices:
        if device.id == specifier:
            return device
    return next((device for device in devices if device.matches(specifier)), None)


async def _run(*cmd: str, timeout: float) -> tuple[str, str, int]:
    """Run a command and return (stdout, stderr, returncode)."""
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        raise
    return (
        stdout_b.decode(errors="replace"),
        stderr_b.decode(errors="replace").strip(),
        proc.returncode or 0,
    )


async def discover_devices(*, flutter_bin: str = "flutter", timeout: float = 30.0) -> list[Device]:
    """List connected devices.

    Args:
        flutter_bin: Flutter executable.
        timeout: Seconds to wait for ``flutter devices``.

    Returns:
        Devices in the order flutter reports them.

    Raises:
        DeviceDiscoveryError: On timeout, missing binary, non-zero exit or bad output.
    """
    try:
        stdout, stderr, rc = await _run(flutter_bin, "devices", "--machine", timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise DeviceDiscoveryError(f"flutter devices timed out after {timeout:g}s") from exc
    except FileNotFoundError as exc:
        raise DeviceDiscoveryError(f"flutter binary not found: {flutter_bin}") from exc

    if rc != 0:
        raise DeviceDiscoveryError(f"flutter devices failed (rc={rc}): {stderr}")
    devices = parse_devices_output(stdout)
    logger.info("discovered %d device(s)", len(devices))
    return devices


async def boot_device(device_id: str, platform: str, *, timeout: float = 60.0) -> None:
    """Boot an iOS simulator or start an Android emulator.

    Simulators are booted with ``xcrun simctl boot`` and awaited. Android
    emulators are started with ``emulator -avd`` and left running; the
    caller refreshes the device list to see them once they come up.

    Raises:
        DeviceBootError: If the platform is unsupported or the boot fails.
    """
    platform = platform.lower()
    if platform == "ios":
        try:
            _, stderr, rc = await _run("xcrun", "simctl", "boot", device_id, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise DeviceBootError(f"simulator boot timed out: {device_id}") from exc
        except FileNotFoundError as exc:
            raise DeviceBootError("xcrun not found") from exc
        # "Unable to boot device in current state: Booted" is success for us.
        if rc != 0 and "Booted" not in stderr:
            raise DeviceBootError(f"failed to boot simulator {device_id}: {stderr}")
        logger.info("booted simulator %s", device_id)
        return

    if platform == "android":
        try:
            await asyncio.create_subprocess_exec(
                "emulator",
                "-avd",
                device_id,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise DeviceBootError("android emulator binary not found") from exc
        logger.info("started android emulator %s", device_id)
        return

    raise DeviceBootError(f"cannot boot devices on platform {platform!r}")
