"""Runs the asynchronous work behind each UpdateAction."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from fdash.app import actions, messages
from fdash.app.actions import UpdateAction
from fdash.app.messages import Message
from fdash.app.session import ReloadTarget, SessionId
from fdash.daemon.commands import CommandChannel, DaemonCommand
from fdash.daemon.devices import boot_device, discover_devices
from fdash.daemon.process import DaemonEvent, DaemonOutput, DaemonProcessSupervisor, ProcessExited
from fdash.daemon.protocol import AppStart, AppStop
from fdash.shared.enums import TaskKind
from fdash.shared.exceptions import DaemonError, DeviceError, ProcessSpawnError
from fdash.shared.models import Device, LaunchConfig

logger = logging.getLogger(__name__)

SupervisorFactory = Callable[[Device, LaunchConfig | None], Awaitable[DaemonProcessSupervisor]]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ActionExecutor:
    """Turns actions into tasks whose outcomes come back as Messages.

    ``execute`` only schedules work, so the engine loop never waits on a
    process. Long-lived session tasks are tracked in ``session_tasks`` for
    the shutdown coordinator; short-lived command tasks are tracked so
    they are not garbage collected mid-flight.
    """

    def __init__(
        self,
        *,
        messages: asyncio.Queue[Message],
        shutdown_event: asyncio.Event,
        project_path: str | Path = ".",
        flutter_bin: str = "flutter",
        command_timeout: float = 30.0,
        stop_app_timeout: float = 1.0,
        exit_timeout: float = 2.0,
        discovery_timeout: float = 30.0,
        event_queue_size: int = 1024,
        supervisor_factory: SupervisorFactory | None = None,
    ) -> None:
        self._messages = messages
        self._shutdown_event = shutdown_event
        self._project_path = project_path
        self._flutter_bin = flutter_bin
        self._command_timeout = command_timeout
        self._stop_app_timeout = stop_app_timeout
        self._exit_timeout = exit_timeout
        self._discovery_timeout = discovery_timeout
        self._event_queue_size = event_queue_size
        self._supervisor_factory = supervisor_factory or self._spawn_supervisor
        self.session_tasks: dict[SessionId, asyncio.Task[None]] = {}
        self._close_events: dict[SessionId, asyncio.Event] = {}
        self._background: set[asyncio.Task[None]] = set()

    def execute(self, action: UpdateAction) -> None:
        """Schedule the work for *action* and return immediately."""
        if isinstance(action, actions.SpawnSession):
            self._start_session(action)
        elif isinstance(action, actions.SpawnTask):
            self._spawn(self._run_task(action.session_id, action.kind, action.app_id, action.channel))
        elif isinstance(action, actions.ReloadAllSessions):
            for target in action.sessions:
                self._spawn(self._reload_target(target))
        elif isinstance(action, actions.CloseSession):
            close_event = self._close_events.get(action.session_id)
            if close_event is not None:
                close_event.set()
        elif isinstance(action, actions.DiscoverDevices):
            self._spawn(self._discover(background=False))
        elif isinstance(action, actions.RefreshDevicesBackground):
            self._spawn(self._discover(background=True))
        elif isinstance(action, actions.BootDevice):
            self._spawn(self._boot(action.device_id, action.platform))
        else:
            logger.warning("unhandled action %r", action)

    async def wait_background(self) -> None:
        """Wait for in-flight command tasks (used by tests and shutdown)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def cancel_background(self) -> None:
        """Cancel in-flight command and discovery tasks."""
        for task in list(self._background):
            task.cancel()
        await self.wait_background()

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send(self, message: Message) -> None:
        await self._messages.put(message)

    # ── Session task ───────────────────────────────────────────

    def _start_session(self, action: actions.SpawnSession) -> None:
        close_event = asyncio.Event()
        self._close_events[action.session_id] = close_event
        task = asyncio.create_task(
            self._run_session(action.session_id, action.device, action.config, close_event),
            name=f"session-{action.session_id}",
        )
        self.session_tasks[action.session_id] = task

    async def _spawn_supervisor(self, device: Device, config: LaunchConfig | None) -> DaemonProcessSupervisor:
        return await DaemonProcessSupervisor.spawn(
            project_path=self._project_path,
            device_id=device.id,
            config=config,
            flutter_bin=self._flutter_bin,
            command_timeout=self._command_timeout,
            stop_app_timeout=self._stop_app_timeout,
            exit_timeout=self._exit_timeout,
            max_events=self._event_queue_size,
        )

    async def _run_session(
        self,
        session_id: SessionId,
        device: Device,
        config: LaunchConfig | None,
        close_event: asyncio.Event,
    ) -> None:
        try:
            try:
                supervisor = await self._supervisor_factory(device, config)
            except ProcessSpawnError as exc:
                logger.error("session %s failed to spawn: %s", session_id, exc)
                await self._send(
                    messages.SessionSpawnFailed(session_id=session_id, device_id=device.id, error=str(exc))
                )
                return

            await self._forward_events(session_id, device, supervisor, close_event)
        except Exception as exc:
            logger.exception("session %s task crashed: %s", session_id, exc)
        finally:
            self.session_tasks.pop(session_id, None)
            self._close_events.pop(session_id, None)

    async def _forward_events(
        self,
        session_id: SessionId,
        device: Device,
        supervisor: DaemonProcessSupervisor,
        close_event: asyncio.Event,
    ) -> None:
        channel = supervisor.channel
        app_id: str | None = None
        exited = False
        stop_waiters = {
            asyncio.create_task(self._shutdown_event.wait()),
            asyncio.create_task(close_event.wait()),
        }
        try:
            attached = messages.SessionProcessAttached(
                session_id=session_id, channel=channel, task=asyncio.current_task()
            )
            started = messages.SessionStarted(
                session_id=session_id,
                device_id=device.id,
                device_name=device.name,
                platform=device.platform,
                pid=supervisor.pid,
            )
            if not await self._send_unless_stopped(session_id, attached, stop_waiters):
                return
            if not await self._send_unless_stopped(session_id, started, stop_waiters):
                return

            while True:
                next_event = asyncio.create_task(supervisor.events.get())
                done, _ = await asyncio.wait({next_event, *stop_waiters}, return_when=asyncio.FIRST_COMPLETED)
                if next_event not in done:
                    next_event.cancel()
                    logger.info("session %s stopping on request", session_id)
                    break

                event: DaemonEvent = next_event.result()
                if isinstance(event, DaemonOutput):
                    if isinstance(event.message, AppStart):
                        app_id = event.message.app_id
                    elif isinstance(event.message, AppStop) and event.message.app_id == app_id:
                        app_id = None
                elif isinstance(event, ProcessExited):
                    exited = True

                if not await self._send_unless_stopped(
                    session_id, messages.SessionDaemon(session_id=session_id, event=event), stop_waiters
                ):
                    break
                if exited:
                    logger.info("session %s process exited", session_id)
                    break
        finally:
            for waiter in stop_waiters:
                waiter.cancel()
            if not exited:
                await supervisor.shutdown(app_id, channel)

    async def _send_unless_stopped(
        self,
        session_id: SessionId,
        message: Message,
        stop_waiters: set[asyncio.Task[bool]],
    ) -> bool:
        """Enqueue *message*, giving up if a stop is requested while the queue is full.

        Returns:
            False if the session was asked to stop before the message was queued.
        """
        try:
            self._messages.put_nowait(message)
            return True
        except asyncio.QueueFull:
            pass

        put = asyncio.create_task(self._messages.put(message))
        done, _ = await asyncio.wait({put, *stop_waiters}, return_when=asyncio.FIRST_COMPLETED)
        if put in done:
            return True
        put.cancel()
        logger.info("session %s stopping with a full queue, dropped %s", session_id, type(message).__name__)
        return False

    # ── Commands ───────────────────────────────────────────────

    async def _reload_target(self, target: ReloadTarget) -> None:
        await self._run_task(target.session_id, TaskKind.RELOAD, target.app_id, target.channel)

    async def _run_task(
        self,
        session_id: SessionId,
        kind: TaskKind,
        app_id: str,
        channel: CommandChannel | None,
    ) -> None:
        if channel is None:
            await self._send(self._failure(session_id, kind, "Flutter not running"))
            return

        command = {
            TaskKind.RELOAD: DaemonCommand.reload,
            TaskKind.RESTART: DaemonCommand.restart,
            TaskKind.STOP: DaemonCommand.stop,
        }[kind](app_id)
        started = time.monotonic()
        try:
            await channel.send(command, timeout=self._command_timeout)
        except DaemonError as exc:
            logger.warning("session %s %s failed: %s", session_id, command.describe(), exc)
            await self._send(self._failure(session_id, kind, str(exc)))
            return

        elapsed = _elapsed_ms(started)
        logger.info("session %s %s done in %dms", session_id, command.describe(), elapsed)
        if kind is TaskKind.RELOAD:
            await self._send(messages.SessionReloadCompleted(session_id=session_id, time_ms=elapsed))
        elif kind is TaskKind.RESTART:
            await self._send(messages.SessionRestartCompleted(session_id=session_id, time_ms=elapsed))

    @staticmethod
    def _failure(session_id: SessionId, kind: TaskKind, reason: str) -> Message:
        if kind is TaskKind.RELOAD:
            return messages.SessionReloadFailed(session_id=session_id, reason=reason)
        if kind is TaskKind.RESTART:
            return messages.SessionRestartFailed(session_id=session_id, reason=reason)
        return messages.SessionStopFailed(session_id=session_id, reason=reason)

    # ── Devices ────────────────────────────────────────────────

    async def _discover(self, *, background: bool) -> None:
        try:
            devices = await discover_devices(flutter_bin=self._flutter_bin, timeout=self._discovery_timeout)
        except DeviceError as exc:
            await self._send(messages.DeviceDiscoveryFailed(error=str(exc), background=background))
            return
        await self._send(messages.DevicesDiscovered(devices=tuple(devices)))

    async def _boot(self, device_id: str, platform: str) -> None:
        try:
            await boot_device(device_id, platform)
        except DeviceError as exc:
            await self._send(messages.DeviceBootFailed(device_id=device_id, error=str(exc)))
            return
        await self._send(messages.DeviceBootCompleted(device_id=device_id))
