"""Work the reducer asks the executor to perform."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from fdash.app.session import ReloadTarget, SessionId
from fdash.daemon.commands import CommandChannel
from fdash.shared.enums import TaskKind
from fdash.shared.models import Device, LaunchConfig


@dataclass(frozen=True, slots=True)
class SpawnSession:
    """Start the session task that owns a daemon process for one device."""

    session_id: SessionId
    device: Device
    config: LaunchConfig | None = None


@dataclass(frozen=True, slots=True)
class SpawnTask:
    """Run one reload, restart or stop against a session's channel."""

    session_id: SessionId
    kind: TaskKind
    app_id: str
    channel: CommandChannel | None


@dataclass(frozen=True, slots=True)
class ReloadAllSessions:
    """Hot reload every listed session independently."""

    sessions: tuple[ReloadTarget, ...]


@dataclass(frozen=True, slots=True)
class CloseSession:
    """Signal a session task to shut its process down and exit."""

    session_id: SessionId


@dataclass(frozen=True, slots=True)
class DiscoverDevices:
    """Foreground device discovery; errors are shown to the user."""


@dataclass(frozen=True, slots=True)
class RefreshDevicesBackground:
    """Silent device refresh; errors are only logged."""


@dataclass(frozen=True, slots=True)
class BootDevice:
    device_id: str
    platform: str


UpdateAction = Union[
    SpawnSession,
    SpawnTask,
    ReloadAllSessions,
    CloseSession,
    DiscoverDevices,
    RefreshDevicesBackground,
    BootDevice,
]
