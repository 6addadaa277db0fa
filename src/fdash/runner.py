"""Headless entry point: discover devices, launch, stream session logs to logging."""

from __future__ import annotations

import asyncio
import logging

from fdash.app import messages
from fdash.app.engine import Engine
from fdash.app.state import StateSnapshot
from fdash.config import Settings, get_settings
from fdash.daemon.devices import discover_devices, find_device
from fdash.shared.enums import LogLevel
from fdash.shared.exceptions import DeviceDiscoveryError, FdashError
from fdash.shared.models import LaunchConfig, LogEntry

logger = logging.getLogger(__name__)

_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class SnapshotLogger:
    """Forwards new session log entries from each snapshot to ``logging``."""

    def __init__(self) -> None:
        self._last: dict[int, LogEntry] = {}

    def __call__(self, snapshot: StateSnapshot) -> None:
        for session in snapshot.sessions:
            if not session.logs:
                continue
            for entry in session.logs[self._resume_index(session.id, session.logs) :]:
                logger.log(_LEVELS[entry.level], "[%s] %s", session.name, entry.message)
            self._last[session.id] = session.logs[-1]
        live_ids = {session.id for session in snapshot.sessions}
        for stale in set(self._last) - live_ids:
            del self._last[stale]

    def _resume_index(self, session_id: int, logs: tuple[LogEntry, ...]) -> int:
        last = self._last.get(session_id)
        if last is None:
            return 0
        # Entries are shared between snapshots, so identity finds the resume point
        # even after the bounded log has evicted older entries.
        for index in range(len(logs) - 1, -1, -1):
            if logs[index] is last:
                return index + 1
        return 0


async def run_from_settings(settings: Settings) -> None:
    """Discover devices, start a session on the configured one and run until quit."""
    engine = Engine(
        settings,
        default_config=LaunchConfig(device=settings.device or "auto"),
        on_snapshot=SnapshotLogger(),
    )

    try:
        devices = await discover_devices(
            flutter_bin=settings.flutter_bin,
            timeout=settings.device_discovery_timeout_seconds,
        )
    except DeviceDiscoveryError as exc:
        logger.error("device discovery failed: %s", exc)
        devices = []
    engine.process(messages.DevicesDiscovered(devices=tuple(devices)))

    if settings.device:
        device = find_device(devices, settings.device)
        if device is None:
            logger.error("no device matches %r", settings.device)
            return
        try:
            engine.create_session(device)
        except FdashError as exc:
            logger.error("cannot start session: %s", exc)
            return
    else:
        for device in devices:
            logger.info("device: %s [%s] (%s)", device.display_name(), device.id, device.platform_short())
        return

    orphaned = await engine.run()
    if orphaned:
        logger.warning("exited with %d orphaned session(s)", len(orphaned))


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_from_settings(settings))


if __name__ == "__main__":
    main()
