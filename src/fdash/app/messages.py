"""Messages consumed by the reducer.

Every producer (session tasks, executor tasks, user input, signal
handlers, file watchers) funnels into one inbound queue of these.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Union

from fdash.app.session import SessionId
from fdash.daemon.commands import CommandChannel
from fdash.daemon.process import DaemonEvent
from fdash.shared.models import Device, LaunchConfig

# ── Session lifecycle (from session tasks) ─────────────────────


@dataclass(frozen=True, slots=True)
class SessionDaemon:
    """A daemon event tagged with the session that produced it."""

    session_id: SessionId
    event: DaemonEvent


@dataclass(frozen=True, slots=True)
class SessionStarted:
    session_id: SessionId
    device_id: str
    device_name: str
    platform: str
    pid: int | None


@dataclass(frozen=True, slots=True)
class SessionSpawnFailed:
    session_id: SessionId
    device_id: str
    error: str


@dataclass(frozen=True, slots=True)
class SessionProcessAttached:
    """The session's process is up; its channel can take commands."""

    session_id: SessionId
    channel: CommandChannel
    task: asyncio.Task[None] | None = None


# ── Command outcomes (from executor tasks) ─────────────────────


@dataclass(frozen=True, slots=True)
class SessionReloadCompleted:
    session_id: SessionId
    time_ms: int


@dataclass(frozen=True, slots=True)
class SessionReloadFailed:
    session_id: SessionId
    reason: str


@dataclass(frozen=True, slots=True)
class SessionRestartCompleted:
    session_id: SessionId
    time_ms: int


@dataclass(frozen=True, slots=True)
class SessionRestartFailed:
    session_id: SessionId
    reason: str


@dataclass(frozen=True, slots=True)
class SessionStopFailed:
    session_id: SessionId
    reason: str


# ── User control ───────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class HotReload:
    """Reload the selected session."""


@dataclass(frozen=True, slots=True)
class HotRestart:
    """Restart the selected session."""


@dataclass(frozen=True, slots=True)
class StopApp:
    """Stop the app in the selected session."""


@dataclass(frozen=True, slots=True)
class AutoReloadTriggered:
    """A file change asked for every session to reload."""


@dataclass(frozen=True, slots=True)
class NextSession:
    pass


@dataclass(frozen=True, slots=True)
class PreviousSession:
    pass


@dataclass(frozen=True, slots=True)
class SelectSessionByIndex:
    index: int


@dataclass(frozen=True, slots=True)
class CloseCurrentSession:
    pass


@dataclass(frozen=True, slots=True)
class ClearLogs:
    """Clear the selected session's log."""


@dataclass(frozen=True, slots=True)
class LaunchSession:
    device: Device
    config: LaunchConfig | None = None


@dataclass(frozen=True, slots=True)
class LaunchSelectedDevice:
    """Launch a session on the device highlighted in the device selector."""

    config: LaunchConfig | None = None


@dataclass(frozen=True, slots=True)
class DeviceSelectNext:
    pass


@dataclass(frozen=True, slots=True)
class DeviceSelectPrevious:
    pass


@dataclass(frozen=True, slots=True)
class Quit:
    pass


# ── Devices ────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class DeviceDiscoveryRequested:
    """Foreground discovery, e.g. when opening a device picker."""


@dataclass(frozen=True, slots=True)
class RefreshDevices:
    """Background refresh of an already-populated device list."""


@dataclass(frozen=True, slots=True)
class DevicesDiscovered:
    devices: tuple[Device, ...]


@dataclass(frozen=True, slots=True)
class DeviceDiscoveryFailed:
    error: str
    background: bool = False


@dataclass(frozen=True, slots=True)
class BootDeviceRequested:
    device_id: str
    platform: str


@dataclass(frozen=True, slots=True)
class DeviceBootCompleted:
    device_id: str


@dataclass(frozen=True, slots=True)
class DeviceBootFailed:
    device_id: str
    error: str


Message = Union[
    SessionDaemon,
    SessionStarted,
    SessionSpawnFailed,
    SessionProcessAttached,
    SessionReloadCompleted,
    SessionReloadFailed,
    SessionRestartCompleted,
    SessionRestartFailed,
    SessionStopFailed,
    HotReload,
    HotRestart,
    StopApp,
    AutoReloadTriggered,
    NextSession,
    PreviousSession,
    SelectSessionByIndex,
    CloseCurrentSession,
    ClearLogs,
    LaunchSession,
    LaunchSelectedDevice,
    DeviceSelectNext,
    DeviceSelectPrevious,
    Quit,
    DeviceDiscoveryRequested,
    RefreshDevices,
    DevicesDiscovered,
    DeviceDiscoveryFailed,
    BootDeviceRequested,
    DeviceBootCompleted,
    DeviceBootFailed,
]
