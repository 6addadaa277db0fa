"""Ordered collection of sessions with a selection cursor."""

from __future__ import annotations

import asyncio
import logging

from fdash.app.session import (
    DEFAULT_MAX_LOGS,
    ReloadTarget,
    Session,
    SessionHandle,
    SessionId,
    next_session_id,
)
from fdash.daemon.commands import CommandChannel
from fdash.shared.exceptions import CapacityExceeded, SessionNotFound
from fdash.shared.models import Device, LaunchConfig

logger = logging.getLogger(__name__)

MAX_SESSIONS = 9


class SessionManager:
    """Owns every SessionHandle.

    Insertion order is display order; index-based selection and the
    number keys of a renderer both rely on it. The selection is always a
    valid index while sessions exist and None when there are none.
    """

    def __init__(self, *, max_sessions: int = MAX_SESSIONS, max_logs: int = DEFAULT_MAX_LOGS) -> None:
        self._max_sessions = max_sessions
        self._max_logs = max_logs
        self._handles: dict[SessionId, SessionHandle] = {}
        self._selected: int | None = None

    # ── Creation / removal ─────────────────────────────────────

    def create_session(self, device: Device, config: LaunchConfig | None = None) -> SessionId:
        """Create and select a session for *device*.

        The same device may back several sessions.

        Raises:
            CapacityExceeded: If the manager already holds ``max_sessions``.
        """
        if len(self._handles) >= self._max_sessions:
            raise CapacityExceeded(f"Maximum of {self._max_sessions} concurrent sessions reached")
        session = Session(id=next_session_id(), device=device, launch_config=config, max_logs=self._max_logs)
        self._handles[session.id] = SessionHandle(session=session)
        self._selected = len(self._handles) - 1
        logger.debug("created session %s for device %s", session.id, device.id)
        return session.id

    def remove(self, session_id: SessionId) -> SessionHandle | None:
        """Remove a session, keeping the selection on a neighbour."""
        if session_id not in self._handles:
            return None
        order = list(self._handles)
        removed_index = order.index(session_id)
        handle = self._handles.pop(session_id)

        if not self._handles:
            self._selected = None
        elif self._selected is not None:
            if removed_index < self._selected:
                self._selected -= 1
            self._selected = min(self._selected, len(self._handles) - 1)
        logger.debug("removed session %s", session_id)
        return handle

    def attach(
        self,
        session_id: SessionId,
        channel: CommandChannel,
        task: asyncio.Task[None] | None = None,
    ) -> None:
        """Record the running process's command channel and task.

        Raises:
            SessionNotFound: If the session was already removed.
        """
        handle = self._handles.get(session_id)
        if handle is None:
            raise SessionNotFound(f"session {session_id} not found")
        handle.channel = channel
        if task is not None:
            handle.task = task

    # ── Lookup ─────────────────────────────────────────────────

    def get(self, session_id: SessionId) -> Session | None:
        handle = self._handles.get(session_id)
        return handle.session if handle is not None else None

    def get_handle(self, session_id: SessionId) -> SessionHandle | None:
        return self._handles.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._handles

    def count(self) -> int:
        return len(self._handles)

    def is_empty(self) -> bool:
        return not self._handles

    def is_full(self) -> bool:
        return len(self._handles) >= self._max_sessions

    def sessions(self) -> list[Session]:
        return [handle.session for handle in self._handles.values()]

    def find_by_app_id(self, app_id: str) -> SessionId | None:
        return next((sid for sid, h in self._handles.items() if h.session.app_id == app_id), None)

    def find_by_device_id(self, device_id: str) -> SessionId | None:
        return next((sid for sid, h in self._handles.items() if h.session.device.id == device_id), None)

    def running_sessions(self) -> list[SessionId]:
        return [sid for sid, h in self._handles.items() if h.session.is_running()]

    def reloadable_sessions(self) -> list[ReloadTarget]:
        """Sessions with both an app id and a command channel, excluding busy ones."""
        targets: list[ReloadTarget] = []
        for sid, handle in self._handles.items():
            session = handle.session
            if session.is_busy() or session.app_id is None or handle.channel is None:
                continue
            targets.append(ReloadTarget(session_id=sid, app_id=session.app_id, channel=handle.channel))
        return targets

    def any_session_busy(self) -> bool:
        return any(handle.session.is_busy() for handle in self._handles.values())

    # ── Selection ──────────────────────────────────────────────

    @property
    def selected_index(self) -> int | None:
        return self._selected

    def selected_id(self) -> SessionId | None:
        if self._selected is None:
            return None
        return list(self._handles)[self._selected]

    def selected(self) -> Session | None:
        sid = self.selected_id()
        return self._handles[sid].session if sid is not None else None

    def selected_handle(self) -> SessionHandle | None:
        sid = self.selected_id()
        return self._handles[sid] if sid is not None else None

    def select(self, session_id: SessionId) -> bool:
        if session_id not in self._handles:
            return False
        self._selected = list(self._handles).index(session_id)
        return True

    def select_by_index(self, index: int) -> bool:
        if not 0 <= index < len(self._handles):
            return False
        self._selected = index
        return True

    def select_next(self) -> None:
        if not self._handles:
            self._selected = None
            return
        current = self._selected if self._selected is not None else -1
        self._selected = (current + 1) % len(self._handles)

    def select_previous(self) -> None:
        if not self._handles:
            self._selected = None
            return
        current = self._selected if self._selected is not None else 0
        self._selected = (current - 1) % len(self._handles)
