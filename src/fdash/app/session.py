"""Per-device session state."""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import NewType

from fdash.daemon.commands import CommandChannel
from fdash.shared.enums import AppPhase, LogSource
from fdash.shared.models import Device, LaunchConfig, LogEntry, utc_now

SessionId = NewType("SessionId", int)

DEFAULT_MAX_LOGS = 10_000

_session_ids = itertools.count(1)


def next_session_id() -> SessionId:
    """Return a fresh SessionId; ids are never reused within a process."""
    return SessionId(next(_session_ids))


@dataclass(slots=True)
class Session:
    """One device plus the Flutter app running (or about to run) on it."""

    id: SessionId
    device: Device
    launch_config: LaunchConfig | None = None
    phase: AppPhase = AppPhase.INITIALIZING
    app_id: str | None = None
    pid: int | None = None
    max_logs: int = DEFAULT_MAX_LOGS
    logs: deque[LogEntry] = field(init=False)
    reload_count: int = 0
    reload_start_time: datetime | None = None
    last_reload_time: datetime | None = None
    last_reload_duration_ms: int | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None

    def __post_init__(self) -> None:
        self.logs = deque(maxlen=self.max_logs)

    @property
    def name(self) -> str:
        if self.launch_config is not None and self.launch_config.name != "Default":
            return f"{self.launch_config.name} ({self.device.name})"
        return self.device.name

    # ── Phase transitions ──────────────────────────────────────

    def mark_started(self, app_id: str) -> None:
        """Record the daemon app id; Initializing becomes Running."""
        self.app_id = app_id
        self.phase = AppPhase.RUNNING
        self.started_at = utc_now()

    def start_reload(self) -> None:
        self.phase = AppPhase.RELOADING
        self.reload_start_time = utc_now()

    def complete_reload(self, duration_ms: int) -> None:
        self.phase = AppPhase.RUNNING
        self.reload_count += 1
        self.last_reload_time = utc_now()
        self.last_reload_duration_ms = duration_ms
        self.reload_start_time = None

    def fail_reload(self) -> None:
        if self.phase is AppPhase.RELOADING:
            self.phase = AppPhase.RUNNING if self.app_id is not None else AppPhase.INITIALIZING
        self.reload_start_time = None

    def mark_app_stopped(self) -> None:
        """The app stopped but the daemon lives on; wait for a new app.start."""
        self.app_id = None
        self.phase = AppPhase.INITIALIZING
        self.reload_start_time = None

    def mark_stopped(self) -> None:
        self.app_id = None
        self.phase = AppPhase.STOPPED
        self.reload_start_time = None

    # ── Queries ────────────────────────────────────────────────

    def is_running(self) -> bool:
        return self.phase in (AppPhase.RUNNING, AppPhase.RELOADING)

    def is_busy(self) -> bool:
        return self.phase is AppPhase.RELOADING

    def reload_elapsed_ms(self) -> int | None:
        if self.reload_start_time is None:
            return None
        return int((utc_now() - self.reload_start_time).total_seconds() * 1000)

    def duration_display(self) -> str | None:
        """Uptime as ``HH:MM:SS`` since the app started, or None."""
        if self.started_at is None or self.phase is AppPhase.STOPPED:
            return None
        total = int((utc_now() - self.started_at).total_seconds())
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def status_icon(self) -> str:
        return {
            AppPhase.INITIALIZING: "○",
            AppPhase.RUNNING: "●",
            AppPhase.RELOADING: "↻",
            AppPhase.STOPPED: "■",
        }[self.phase]

    # ── Logs ───────────────────────────────────────────────────

    def add_log(self, entry: LogEntry) -> None:
        self.logs.append(entry)

    def log_info(self, source: LogSource, message: str) -> None:
        self.logs.append(LogEntry.info(source, message))

    def log_warning(self, source: LogSource, message: str) -> None:
        self.logs.append(LogEntry.warning(source, message))

    def log_error(self, source: LogSource, message: str) -> None:
        self.logs.append(LogEntry.error(source, message))

    def log_debug(self, source: LogSource, message: str) -> None:
        self.logs.append(LogEntry.debug(source, message))

    def clear_logs(self) -> None:
        self.logs.clear()


@dataclass(slots=True)
class SessionHandle:
    """A Session plus the handles needed to command and await its process."""

    session: Session
    channel: CommandChannel | None = None
    task: asyncio.Task[None] | None = None

    @property
    def id(self) -> SessionId:
        return self.session.id


@dataclass(frozen=True, slots=True)
class ReloadTarget:
    """A session that can take a hot reload right now."""

    session_id: SessionId
    app_id: str
    channel: CommandChannel
