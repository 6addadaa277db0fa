"""Supervisor for one ``flutter run --machine`` process."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from fdash.daemon.commands import CommandChannel, CommandResponse, DaemonCommand, RequestTracker
from fdash.daemon.protocol import DaemonMessage, DaemonResponse, parse_daemon_line
from fdash.shared.exceptions import DaemonError, FlutterNotFoundError, NoProjectError, ProcessSpawnError
from fdash.shared.models import LaunchConfig

logger = logging.getLogger(__name__)

# Pipe buffer limit; daemon JSON lines (large app.log payloads) may exceed asyncio's 64 KiB default.
STREAM_LIMIT = 1024 * 1024
DEFAULT_EVENT_QUEUE_SIZE = 1024


# ── Events emitted by the supervisor ───────────────────────────


@dataclass(frozen=True, slots=True)
class DaemonOutput:
    """A parsed protocol message from stdout."""

    message: DaemonMessage


@dataclass(frozen=True, slots=True)
class RawOutput:
    """A stdout line that is not daemon JSON (build tool chatter)."""

    line: str


@dataclass(frozen=True, slots=True)
class StderrOutput:
    """A stderr line."""

    line: str


@dataclass(frozen=True, slots=True)
class ProcessExited:
    """Stdout closed; the process is gone or going."""

    code: int | None


DaemonEvent = Union[DaemonOutput, RawOutput, StderrOutput, ProcessExited]


class DaemonProcessSupervisor:
    """Owns one daemon process end-to-end.

    Reads stdout and stderr line by line on two background tasks, routes
    responses to the request tracker and publishes every other line as a
    DaemonEvent on ``events``. The owning session task drains ``events``.

    ``events`` is bounded: while nobody drains it the readers block, which
    stops reading the pipes. Once shutdown starts, output other than
    responses is dropped so ``app.stop`` can still be answered.
    """

    def __init__(
        self,
        *,
        process: Any,
        events: asyncio.Queue[DaemonEvent] | None = None,
        max_events: int = DEFAULT_EVENT_QUEUE_SIZE,
        command_timeout: float = 30.0,
        stop_app_timeout: float = 1.0,
        exit_timeout: float = 2.0,
    ) -> None:
        self._process = process
        self._events: asyncio.Queue[DaemonEvent] = events if events is not None else asyncio.Queue(max_events)
        self._closing = False
        self._tracker = RequestTracker()
        self._channel = CommandChannel(writer=process.stdin, tracker=self._tracker, default_timeout=command_timeout)
        self._stop_app_timeout = stop_app_timeout
        self._exit_timeout = exit_timeout
        self._readers = [
            asyncio.create_task(self._read_stdout(), name=f"daemon-stdout-{self.pid}"),
            asyncio.create_task(self._read_stderr(), name=f"daemon-stderr-{self.pid}"),
        ]

    @classmethod
    async def spawn(
        cls,
        *,
        project_path: str | Path,
        device_id: str,
        config: LaunchConfig | None = None,
        flutter_bin: str = "flutter",
        command_timeout: float = 30.0,
        stop_app_timeout: float = 1.0,
        exit_timeout: float = 2.0,
        max_events: int = DEFAULT_EVENT_QUEUE_SIZE,
    ) -> DaemonProcessSupervisor:
        """Start ``flutter run --machine`` for one device.

        Args:
            project_path: Flutter project directory (must contain pubspec.yaml).
            device_id: Concrete device id.
            config: Optional launch configuration (mode, flavor, defines).
            flutter_bin: Flutter executable.

        Returns:
            A supervisor whose readers are already running.

        Raises:
            NoProjectError: If *project_path* is not a Flutter project.
            FlutterNotFoundError: If *flutter_bin* cannot be executed.
            ProcessSpawnError: For any other spawn failure.
        """
        project = Path(project_path)
        if not (project / "pubspec.yaml").is_file():
            raise NoProjectError(f"no pubspec.yaml in {project}")

        args = (config or LaunchConfig()).build_flutter_args(device_id)
        logger.info("spawning %s %s in %s", flutter_bin, " ".join(args), project)
        try:
            process = await asyncio.create_subprocess_exec(
                flutter_bin,
                *args,
                cwd=str(project),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            raise FlutterNotFoundError(f"flutter binary not found: {flutter_bin}") from exc
        except OSError as exc:
            raise ProcessSpawnError(f"failed to start {flutter_bin}: {exc}") from exc

        logger.info("flutter process started (pid=%s) for device %s", process.pid, device_id)
        return cls(
            process=process,
            command_timeout=command_timeout,
            stop_app_timeout=stop_app_timeout,
            exit_timeout=exit_timeout,
            max_events=max_events,
        )

    @property
    def pid(self) -> int | None:
        return getattr(self._process, "pid", None)

    @property
    def events(self) -> asyncio.Queue[DaemonEvent]:
        return self._events

    @property
    def channel(self) -> CommandChannel:
        return self._channel

    @property
    def tracker(self) -> RequestTracker:
        return self._tracker

    def has_exited(self) -> bool:
        """Non-blocking liveness check."""
        return self._process.returncode is not None

    async def send_command(self, command: DaemonCommand, timeout: float | None = None) -> CommandResponse:
        """Send *command* and await the correlated response.

        Raises:
            CommandTimeout: If no response arrives within *timeout*.
            ChannelClosed: If the process pipes are closed.
            CommandFailed: If the daemon reports an error.
        """
        return await self._channel.send(command, timeout=timeout)

    async def shutdown(self, app_id: str | None = None, channel: CommandChannel | None = None) -> None:
        """Stop the app and the daemon, force-killing as a last resort.

        Already-exited processes return immediately without any command
        being written. Otherwise: ``app.stop`` (bounded by the stop timeout)
        when an app id and channel are known, a fire-and-forget
        ``daemon.shutdown``, a bounded wait for exit, then one kill.
        """
        self._begin_closing()
        try:
            if self.has_exited():
                logger.debug("daemon pid=%s already exited, skipping shutdown commands", self.pid)
                return

            if app_id is not None and channel is not None:
                try:
                    await channel.send(DaemonCommand.stop(app_id), timeout=self._stop_app_timeout)
                except DaemonError as exc:
                    logger.debug("app.stop for %s did not complete: %s", app_id, exc)
                    if self.has_exited():
                        logger.debug("daemon pid=%s exited during app.stop", self.pid)
                        return

            try:
                await self._channel.send_nowait(DaemonCommand.shutdown())
            except DaemonError as exc:
                logger.debug("daemon.shutdown not delivered: %s", exc)

            try:
                await asyncio.wait_for(self._process.wait(), timeout=self._exit_timeout)
                logger.info("daemon pid=%s exited gracefully", self.pid)
            except asyncio.TimeoutError:
                logger.warning("daemon pid=%s did not exit within %gs, killing", self.pid, self._exit_timeout)
                self._kill()
        finally:
            await self._stop_readers()

    def _begin_closing(self) -> None:
        self._closing = True
        dropped = 0
        while not self._events.empty():
            self._events.get_nowait()
            dropped += 1
        if dropped:
            logger.debug("dropped %d undelivered event(s) from pid=%s", dropped, self.pid)

    async def _emit(self, event: DaemonEvent) -> None:
        if self._closing:
            return
        await self._events.put(event)

    def _kill(self) -> None:
        try:
            self._process.kill()
        except ProcessLookupError:
            logger.debug("daemon pid=%s vanished before kill", self.pid)

    async def _stop_readers(self) -> None:
        for task in self._readers:
            task.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._tracker.cancel_all("daemon shut down")

    async def _read_stdout(self) -> None:
        stream = self._process.stdout
        while True:
            raw = await read_line(stream, self.pid)
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip("\r\n")
            if not line.strip():
                continue

            message = parse_daemon_line(line)
            if message is None:
                if line.lstrip().startswith("[{"):
                    logger.debug("unparseable daemon line discarded: %s", line[:200])
                    continue
                await self._emit(RawOutput(line))
            elif isinstance(message, DaemonResponse):
                if not self._tracker.handle_response(message):
                    logger.debug("response for unknown request id %s", message.id)
            else:
                await self._emit(DaemonOutput(message))

        self._tracker.cancel_all()
        code: int | None = None
        try:
            code = await asyncio.wait_for(self._process.wait(), timeout=self._exit_timeout)
        except asyncio.TimeoutError:
            logger.debug("daemon stdout closed but pid=%s still running", self.pid)
        logger.info("daemon pid=%s stdout closed (exit code %s)", self.pid, code)
        await self._emit(ProcessExited(code))

    async def _read_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        while True:
            raw = await read_line(stream, self.pid)
            if not raw:
                return
            line = raw.decode(errors="replace").rstrip("\r\n")
            if line.strip():
                await self._emit(StderrOutput(line))


async def read_line(stream: asyncio.StreamReader, pid: int | None = None) -> bytes:
    """Read one line, skipping lines longer than the stream limit.

    Returns:
        The line including its newline, a final unterminated line, or
        ``b""`` at EOF.
    """
    while True:
        try:
            return await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            return exc.partial
        except asyncio.LimitOverrunError as exc:
            logger.warning("discarding oversized output line from pid=%s (over %d bytes)", pid, exc.consumed)
            await _skip_line(stream, exc.consumed)


async def _skip_line(stream: asyncio.StreamReader, buffered: int) -> None:
    # LimitOverrunError leaves the data buffered; drop it up to the next newline.
    await stream.readexactly(buffered)
    while True:
        try:
            await stream.readuntil(b"\n")
            return
        except asyncio.IncompleteReadError:
            return
        except asyncio.LimitOverrunError as exc:
            await stream.readexactly(exc.consumed)
