"""The engine: one inbound queue, one reducer, one executor."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable

from fdash.app import actions, messages
from fdash.app.executor import ActionExecutor, SupervisorFactory
from fdash.app.messages import Message
from fdash.app.reducer import update
from fdash.app.session import SessionId
from fdash.app.shutdown import ShutdownCoordinator
from fdash.app.state import AppState, StateSnapshot
from fdash.config import Settings
from fdash.shared.models import Device, LaunchConfig

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[StateSnapshot], None]


class Engine:
    """Owns the app state and serialises every change through ``update``.

    Session tasks and executor tasks only ever put messages on the queue;
    the run loop applies them one at a time, executes the resulting
    action and publishes a fresh snapshot.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        default_config: LaunchConfig | None = None,
        on_snapshot: SnapshotCallback | None = None,
        supervisor_factory: SupervisorFactory | None = None,
    ) -> None:
        self._settings = settings
        self._state = AppState.create(
            max_sessions=settings.max_sessions,
            max_logs=settings.max_logs_per_session,
        )
        self._state.default_config = default_config
        self._queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=settings.message_queue_size)
        self._shutdown_event = asyncio.Event()
        self._executor = ActionExecutor(
            messages=self._queue,
            shutdown_event=self._shutdown_event,
            project_path=settings.project_path,
            flutter_bin=settings.flutter_bin,
            command_timeout=settings.command_timeout_seconds,
            stop_app_timeout=settings.stop_app_timeout_seconds,
            exit_timeout=settings.daemon_exit_timeout_seconds,
            discovery_timeout=settings.device_discovery_timeout_seconds,
            event_queue_size=settings.event_queue_size,
            supervisor_factory=supervisor_factory,
        )
        self._coordinator = ShutdownCoordinator(
            shutdown_event=self._shutdown_event,
            tasks=self._executor.session_tasks,
            join_timeout=settings.task_join_timeout_seconds,
        )
        self._on_snapshot = on_snapshot
        self.latest_snapshot = StateSnapshot.capture(self._state)

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def executor(self) -> ActionExecutor:
        return self._executor

    @property
    def coordinator(self) -> ShutdownCoordinator:
        return self._coordinator

    async def send(self, message: Message) -> None:
        await self._queue.put(message)

    def send_nowait(self, message: Message) -> None:
        """Enqueue from a synchronous callback such as a signal handler.

        Raises:
            asyncio.QueueFull: If the inbound queue is saturated.
        """
        self._queue.put_nowait(message)

    def create_session(self, device: Device, config: LaunchConfig | None = None) -> SessionId:
        """Create a session and start its process.

        Runs on the engine's event loop between reducer ticks, so the
        capacity error reaches the caller directly.

        Raises:
            CapacityExceeded: If the session limit is reached.
        """
        config = config or self._state.default_config
        session_id = self._state.session_manager.create_session(device, config)
        self._executor.execute(actions.SpawnSession(session_id=session_id, device=device, config=config))
        self._publish()
        return session_id

    async def trigger_reload_all(self) -> None:
        """Entry point for a file watcher."""
        await self.send(messages.AutoReloadTriggered())

    def process(self, message: Message) -> None:
        """Apply one message and run its action."""
        self._state, action = update(self._state, message)
        if action is not None:
            self._executor.execute(action)
        self._publish()

    async def run(self, *, install_signal_handlers: bool = True) -> list[SessionId]:
        """Process messages until quit, then shut every session down.

        Returns:
            Ids of sessions orphaned by the shutdown timeout.
        """
        if install_signal_handlers:
            self._install_signal_handlers()
        logger.info("engine started")
        try:
            while not self._state.should_quit:
                message = await self._queue.get()
                try:
                    self.process(message)
                except Exception as exc:
                    logger.exception("failed to process %s: %s", type(message).__name__, exc)
        finally:
            if install_signal_handlers:
                self._remove_signal_handlers()
            orphaned = await self._coordinator.shutdown()
            await self._executor.cancel_background()
            logger.info("engine stopped")
        return orphaned

    def _publish(self) -> None:
        self.latest_snapshot = StateSnapshot.capture(self._state)
        if self._on_snapshot is not None:
            self._on_snapshot(self.latest_snapshot)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("signal handlers unavailable for %s", sig.name)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("received %s, quitting", sig.name)
        try:
            self.send_nowait(messages.Quit())
        except asyncio.QueueFull:
            self._state.should_quit = True
            self._shutdown_event.set()
