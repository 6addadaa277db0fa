"""The reducer: ``update(state, message) -> (state, action)``.

Runs on the engine loop one message at a time. It never awaits and never
touches a process; anything asynchronous is returned as an UpdateAction
for the executor.
"""

from __future__ import annotations

import logging

from fdash.app import actions, messages
from fdash.app.actions import UpdateAction
from fdash.app.messages import Message
from fdash.app.session import SessionId
from fdash.app.state import AppState
from fdash.daemon.process import DaemonOutput, ProcessExited, RawOutput, StderrOutput
from fdash.daemon.protocol import AppStart, AppStop, DeviceAdded, DeviceRemoved, detect_raw_line_level, to_log_entry
from fdash.shared.enums import LogSource, TaskKind
from fdash.shared.exceptions import CapacityExceeded
from fdash.shared.models import Device, LaunchConfig, LogEntry

logger = logging.getLogger(__name__)

UpdateResult = tuple[AppState, UpdateAction | None]

_TASK_LABELS: dict[TaskKind, tuple[str, str]] = {
    # kind -> (progress message, verb for "No app running to ...")
    TaskKind.RELOAD: ("Reloading...", "reload"),
    TaskKind.RESTART: ("Restarting...", "restart"),
    TaskKind.STOP: ("Stopping app...", "stop"),
}


def update(state: AppState, message: Message) -> UpdateResult:
    """Apply one message to *state* and return the follow-up action, if any."""
    if isinstance(message, messages.SessionDaemon):
        _handle_session_daemon(state, message)
        return state, None
    if isinstance(message, messages.HotReload):
        return state, _session_task(state, TaskKind.RELOAD)
    if isinstance(message, messages.HotRestart):
        return state, _session_task(state, TaskKind.RESTART)
    if isinstance(message, messages.StopApp):
        return state, _session_task(state, TaskKind.STOP)
    if isinstance(message, messages.AutoReloadTriggered):
        return state, _auto_reload(state)
    if isinstance(message, (messages.LaunchSession, messages.LaunchSelectedDevice)):
        return state, _launch(state, message)
    if isinstance(
        message,
        (
            messages.SessionStarted,
            messages.SessionSpawnFailed,
            messages.SessionProcessAttached,
            messages.SessionReloadCompleted,
            messages.SessionReloadFailed,
            messages.SessionRestartCompleted,
            messages.SessionRestartFailed,
            messages.SessionStopFailed,
        ),
    ):
        _handle_session_outcome(state, message)
        return state, None
    if isinstance(message, messages.CloseCurrentSession):
        return state, _close_current(state)
    if isinstance(
        message,
        (
            messages.DeviceDiscoveryRequested,
            messages.RefreshDevices,
            messages.DevicesDiscovered,
            messages.DeviceDiscoveryFailed,
            messages.BootDeviceRequested,
            messages.DeviceBootCompleted,
            messages.DeviceBootFailed,
            messages.DeviceSelectNext,
            messages.DeviceSelectPrevious,
        ),
    ):
        return state, _handle_devices(state, message)

    manager = state.session_manager
    if isinstance(message, messages.NextSession):
        manager.select_next()
    elif isinstance(message, messages.PreviousSession):
        manager.select_previous()
    elif isinstance(message, messages.SelectSessionByIndex):
        manager.select_by_index(message.index)
    elif isinstance(message, messages.ClearLogs):
        session = manager.selected()
        if session is not None:
            session.clear_logs()
    elif isinstance(message, messages.Quit):
        logger.info("quit requested")
        state.should_quit = True
    else:
        logger.warning("unhandled message %r", message)
    return state, None


# ── Daemon events ──────────────────────────────────────────────


def _handle_session_daemon(state: AppState, message: messages.SessionDaemon) -> None:
    session = state.session_manager.get(message.session_id)
    if session is None:
        logger.debug("discarding event for closed session %s", message.session_id)
        return

    event = message.event
    if isinstance(event, DaemonOutput):
        daemon_message = event.message
        if isinstance(daemon_message, AppStart):
            session.mark_started(daemon_message.app_id)
        elif isinstance(daemon_message, AppStop) and daemon_message.app_id == session.app_id:
            session.mark_app_stopped()
        elif isinstance(daemon_message, DeviceAdded):
            state.device_selector.add_device(daemon_message.device)
        elif isinstance(daemon_message, DeviceRemoved):
            state.device_selector.remove_device(daemon_message.device.id)

        entry = to_log_entry(daemon_message)
        if entry is not None:
            session.add_log(entry)
    elif isinstance(event, RawOutput):
        level = detect_raw_line_level(event.line)
        session.add_log(LogEntry(level=level, source=LogSource.FLUTTER, message=event.line))
    elif isinstance(event, StderrOutput):
        session.log_error(LogSource.FLUTTER_ERROR, event.line)
    elif isinstance(event, ProcessExited):
        code = "unknown" if event.code is None else str(event.code)
        session.log_warning(LogSource.APP, f"Flutter process exited (code {code})")
        session.mark_stopped()


# ── Session commands ───────────────────────────────────────────


def _session_task(state: AppState, kind: TaskKind) -> UpdateAction | None:
    handle = state.session_manager.selected_handle()
    if handle is None:
        return None
    session = handle.session
    progress, verb = _TASK_LABELS[kind]

    if session.is_busy():
        session.log_debug(LogSource.APP, f"Reload in progress, ignoring {verb} request")
        return None
    if session.app_id is None or handle.channel is None:
        session.log_error(LogSource.APP, f"No app running to {verb}")
        return None

    if kind is not TaskKind.STOP:
        session.start_reload()
    session.log_info(LogSource.APP, progress)
    return actions.SpawnTask(session_id=session.id, kind=kind, app_id=session.app_id, channel=handle.channel)


def _auto_reload(state: AppState) -> UpdateAction | None:
    manager = state.session_manager
    if manager.any_session_busy():
        # All devices reload together or not at all.
        logger.debug("auto reload skipped: a session is already reloading")
        return None

    targets = manager.reloadable_sessions()
    if not targets:
        logger.debug("auto reload skipped: no reloadable sessions")
        return None

    for target in targets:
        session = manager.get(target.session_id)
        if session is not None:
            session.start_reload()
            session.log_info(LogSource.WATCHER, "File change detected, reloading...")
    return actions.ReloadAllSessions(sessions=tuple(targets))


def _handle_session_outcome(state: AppState, message: messages.Message) -> None:
    manager = state.session_manager
    session_id: SessionId = message.session_id  # type: ignore[union-attr]

    if isinstance(message, messages.SessionSpawnFailed):
        session = manager.get(session_id)
        if session is not None:
            session.mark_stopped()
            session.log_error(LogSource.APP, f"Failed to start Flutter: {message.error}")
        state.last_error = f"Failed to start session on {message.device_id}: {message.error}"
        logger.error("session %s spawn failed: %s", session_id, message.error)
        manager.remove(session_id)
        return

    session = manager.get(session_id)
    if session is None:
        logger.debug("discarding %s for closed session %s", type(message).__name__, session_id)
        return

    if isinstance(message, messages.SessionStarted):
        pid = "unknown" if message.pid is None else message.pid
        session.pid = message.pid
        session.log_info(LogSource.APP, f"Flutter process started (PID: {pid})")
    elif isinstance(message, messages.SessionProcessAttached):
        manager.attach(session_id, message.channel, message.task)
    elif isinstance(message, messages.SessionReloadCompleted):
        session.complete_reload(message.time_ms)
        session.log_info(LogSource.APP, f"Reloaded in {message.time_ms}ms")
    elif isinstance(message, messages.SessionReloadFailed):
        session.fail_reload()
        session.log_error(LogSource.APP, f"Reload failed: {message.reason}")
    elif isinstance(message, messages.SessionRestartCompleted):
        session.complete_reload(message.time_ms)
        session.log_info(LogSource.APP, f"Restarted in {message.time_ms}ms")
    elif isinstance(message, messages.SessionRestartFailed):
        session.fail_reload()
        session.log_error(LogSource.APP, f"Restart failed: {message.reason}")
    elif isinstance(message, messages.SessionStopFailed):
        session.log_error(LogSource.APP, f"Stop failed: {message.reason}")


def _close_current(state: AppState) -> UpdateAction | None:
    manager = state.session_manager
    session_id = manager.selected_id()
    if session_id is None:
        return None
    manager.remove(session_id)
    logger.info("closed session %s", session_id)
    return actions.CloseSession(session_id=session_id)


def _launch(state: AppState, message: messages.LaunchSession | messages.LaunchSelectedDevice) -> UpdateAction | None:
    device: Device | None
    if isinstance(message, messages.LaunchSession):
        device = message.device
    else:
        device = state.device_selector.selected_device()
    if device is None:
        state.last_error = "No device selected"
        return None

    config: LaunchConfig | None = message.config or state.default_config
    try:
        session_id = state.session_manager.create_session(device, config)
    except CapacityExceeded as exc:
        state.last_error = str(exc)
        logger.warning("cannot launch on %s: %s", device.id, exc)
        return None

    state.last_error = None
    session = state.session_manager.get(session_id)
    if session is not None:
        session.log_info(LogSource.APP, f"Launching on {device.display_name()}...")
    return actions.SpawnSession(session_id=session_id, device=device, config=config)


# ── Devices ────────────────────────────────────────────────────


def _handle_devices(state: AppState, message: messages.Message) -> UpdateAction | None:
    selector = state.device_selector
    if isinstance(message, messages.DeviceDiscoveryRequested):
        state.devices_loading = True
        state.device_error = None
        return actions.DiscoverDevices()
    if isinstance(message, messages.RefreshDevices):
        return actions.RefreshDevicesBackground()
    if isinstance(message, messages.DevicesDiscovered):
        selector.set_devices(list(message.devices))
        state.devices_loading = False
        state.device_error = None
        if message.devices:
            logger.info("discovered %d device(s)", len(message.devices))
        else:
            logger.info("no devices found")
        return None
    if isinstance(message, messages.DeviceDiscoveryFailed):
        state.devices_loading = False
        if message.background:
            logger.warning("background device refresh failed: %s", message.error)
        else:
            state.device_error = message.error
            logger.error("device discovery failed: %s", message.error)
        return None
    if isinstance(message, messages.BootDeviceRequested):
        return actions.BootDevice(device_id=message.device_id, platform=message.platform)
    if isinstance(message, messages.DeviceBootCompleted):
        logger.info("device boot completed: %s", message.device_id)
        return actions.DiscoverDevices()
    if isinstance(message, messages.DeviceBootFailed):
        state.device_error = f"Failed to boot {message.device_id}: {message.error}"
        logger.warning("device boot failed: %s - %s", message.device_id, message.error)
        return None
    if isinstance(message, messages.DeviceSelectNext):
        selector.select_next()
    elif isinstance(message, messages.DeviceSelectPrevious):
        selector.select_previous()
    return None
