"""Reducer-owned application state and the read-only snapshot for renderers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel

from fdash.app.session import DEFAULT_MAX_LOGS, Session, SessionId
from fdash.app.session_manager import MAX_SESSIONS, SessionManager
from fdash.shared.enums import AppPhase
from fdash.shared.models import Device, LaunchConfig, LogEntry


class DeviceSelector:
    """Device list with a cursor that follows the device, not the index."""

    def __init__(self) -> None:
        self._devices: list[Device] = []
        self._selected: int | None = None

    @property
    def devices(self) -> list[Device]:
        return list(self._devices)

    @property
    def selected_index(self) -> int | None:
        return self._selected

    def selected_device(self) -> Device | None:
        if self._selected is None:
            return None
        return self._devices[self._selected]

    def selected_device_id(self) -> str | None:
        device = self.selected_device()
        return device.id if device is not None else None

    def select_device_by_id(self, device_id: str) -> bool:
        for index, device in enumerate(self._devices):
            if device.id == device_id:
                self._selected = index
                return True
        return False

    def reset_selection_to_first(self) -> None:
        self._selected = 0 if self._devices else None

    def set_devices(self, devices: list[Device]) -> None:
        """Replace the list, keeping the same device selected if it is still present.

        Resolving the old index against a reordered list would silently
        select a different device.
        """
        previous = self.selected_device_id()
        self._devices = list(devices)
        if previous is None or not self.select_device_by_id(previous):
            self.reset_selection_to_first()

    def add_device(self, device: Device) -> None:
        if any(existing.id == device.id for existing in self._devices):
            return
        self.set_devices([*self._devices, device])

    def remove_device(self, device_id: str) -> None:
        self.set_devices([device for device in self._devices if device.id != device_id])

    def select_next(self) -> None:
        if self._devices:
            current = self._selected if self._selected is not None else -1
            self._selected = (current + 1) % len(self._devices)

    def select_previous(self) -> None:
        if self._devices:
            current = self._selected if self._selected is not None else 0
            self._selected = (current - 1) % len(self._devices)


@dataclass(slots=True)
class AppState:
    """Everything the reducer owns. Mutated only inside ``update``."""

    session_manager: SessionManager = field(default_factory=SessionManager)
    device_selector: DeviceSelector = field(default_factory=DeviceSelector)
    default_config: LaunchConfig | None = None
    devices_loading: bool = False
    device_error: str | None = None
    last_error: str | None = None
    should_quit: bool = False

    @classmethod
    def create(cls, *, max_sessions: int = MAX_SESSIONS, max_logs: int = DEFAULT_MAX_LOGS) -> AppState:
        return cls(session_manager=SessionManager(max_sessions=max_sessions, max_logs=max_logs))


# ── Snapshot ───────────────────────────────────────────────────


class SessionSnapshot(BaseModel):
    """Immutable view of one session for rendering."""

    model_config = {"frozen": True}

    id: int
    name: str
    device_id: str
    device_name: str
    platform: str
    phase: AppPhase
    app_id: str | None
    status_icon: str
    reload_count: int
    last_reload_duration_ms: int | None
    started_at: datetime | None
    logs: tuple[LogEntry, ...]

    @classmethod
    def from_session(cls, session: Session) -> SessionSnapshot:
        return cls(
            id=session.id,
            name=session.name,
            device_id=session.device.id,
            device_name=session.device.display_name(),
            platform=session.device.platform_short(),
            phase=session.phase,
            app_id=session.app_id,
            status_icon=session.status_icon(),
            reload_count=session.reload_count,
            last_reload_duration_ms=session.last_reload_duration_ms,
            started_at=session.started_at,
            logs=tuple(session.logs),
        )


class StateSnapshot(BaseModel):
    """Read-only state published to the renderer after every reducer tick."""

    model_config = {"frozen": True}

    sessions: tuple[SessionSnapshot, ...]
    selected_index: int | None
    selected_session_id: int | None
    devices: tuple[Device, ...]
    selected_device_id: str | None
    devices_loading: bool
    device_error: str | None
    last_error: str | None
    quitting: bool

    @classmethod
    def capture(cls, state: AppState) -> StateSnapshot:
        manager = state.session_manager
        selected: SessionId | None = manager.selected_id()
        return cls(
            sessions=tuple(SessionSnapshot.from_session(s) for s in manager.sessions()),
            selected_index=manager.selected_index,
            selected_session_id=selected,
            devices=tuple(state.device_selector.devices),
            selected_device_id=state.device_selector.selected_device_id(),
            devices_loading=state.devices_loading,
            device_error=state.device_error,
            last_error=state.last_error,
            quitting=state.should_quit,
        )
