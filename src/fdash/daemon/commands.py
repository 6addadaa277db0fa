"""Daemon commands, request-id correlation and the per-session command channel."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import BaseModel

from fdash.daemon.protocol import DaemonResponse
from fdash.shared.exceptions import ChannelClosed, CommandFailed, CommandTimeout

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0

_request_ids = itertools.count(1)


def next_request_id() -> int:
    """Return a process-wide, monotonically increasing request id."""
    return next(_request_ids)


@dataclass(frozen=True, slots=True)
class DaemonCommand:
    """A command understood by ``flutter run --machine``."""

    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def reload(cls, app_id: str) -> DaemonCommand:
        return cls("app.restart", {"appId": app_id, "fullRestart": False, "pause": False})

    @classmethod
    def restart(cls, app_id: str) -> DaemonCommand:
        return cls("app.restart", {"appId": app_id, "fullRestart": True, "pause": False})

    @classmethod
    def stop(cls, app_id: str) -> DaemonCommand:
        return cls("app.stop", {"appId": app_id})

    @classmethod
    def screenshot(cls, app_id: str) -> DaemonCommand:
        return cls("app.screenshot", {"appId": app_id})

    @classmethod
    def version(cls) -> DaemonCommand:
        return cls("daemon.version")

    @classmethod
    def shutdown(cls) -> DaemonCommand:
        return cls("daemon.shutdown")

    @classmethod
    def enable_devices(cls) -> DaemonCommand:
        return cls("device.enable")

    @classmethod
    def get_devices(cls) -> DaemonCommand:
        return cls("device.getDevices")

    def describe(self) -> str:
        """Short label used in logs, e.g. ``hot reload`` or ``daemon.version``."""
        if self.method == "app.restart":
            return "hot restart" if self.params.get("fullRestart") else "hot reload"
        if self.method == "app.stop":
            return "stop app"
        return self.method

    def encode(self, request_id: int) -> str:
        """Serialize to one protocol line (newline included)."""
        body = {"id": request_id, "method": self.method, "params": self.params}
        return "[" + json.dumps(body, separators=(",", ":")) + "]\n"


class CommandResponse(BaseModel):
    """The daemon's answer to one command."""

    model_config = {"frozen": True}

    id: int
    result: Any = None
    error: Any = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class PendingRequest:
    """A command waiting for its correlated response."""

    request_id: int
    method: str
    future: asyncio.Future[CommandResponse]


class RequestTracker:
    """Correlates outgoing request ids with their waiting callers."""

    def __init__(self) -> None:
        self._pending: dict[int, PendingRequest] = {}

    def register(self, request_id: int, method: str) -> asyncio.Future[CommandResponse]:
        """Register a request and return the future its response resolves."""
        future: asyncio.Future[CommandResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(request_id=request_id, method=method, future=future)
        return future

    def handle_response(self, response: DaemonResponse) -> bool:
        """Resolve the pending request matching *response*.

        Returns:
            True if a waiting caller was found, False for unknown or late ids.
        """
        pending = self._pending.pop(response.id, None)
        if pending is None:
            return False
        if not pending.future.done():
            pending.future.set_result(CommandResponse(id=response.id, result=response.result, error=response.error))
        return True

    def discard(self, request_id: int) -> None:
        self._pending.pop(request_id, None)

    def cancel_all(self, reason: str = "daemon output closed") -> int:
        """Fail every pending request with ChannelClosed.

        Returns:
            Number of requests that were pending.
        """
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(ChannelClosed(f"{request.method} (id={request.request_id}): {reason}"))
        return len(pending)

    def pending_count(self) -> int:
        return len(self._pending)


class LineWriter(Protocol):
    """The subset of ``asyncio.StreamWriter`` the channel writes through."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def is_closing(self) -> bool: ...


class CommandChannel:
    """Sends commands to one daemon process and awaits correlated responses.

    Handed out to the reducer and executor as the session's endpoint; it
    owns no state beyond the writer and the shared request tracker.
    """

    def __init__(
        self,
        *,
        writer: LineWriter,
        tracker: RequestTracker,
        default_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self._writer = writer
        self._tracker = tracker
        self._default_timeout = default_timeout

    @property
    def tracker(self) -> RequestTracker:
        return self._tracker

    def is_closed(self) -> bool:
        return self._writer.is_closing()

    async def send(self, command: DaemonCommand, timeout: float | None = None) -> CommandResponse:
        """Send *command* and wait for the daemon's response.

        Args:
            command: Command to send.
            timeout: Seconds to wait for the response; defaults to the channel's.

        Returns:
            The successful response.

        Raises:
            CommandTimeout: If no response arrived in time. Not retried.
            ChannelClosed: If the process input or output is gone.
            CommandFailed: If the daemon replied with an error.
        """
        limit = self._default_timeout if timeout is None else timeout
        request_id = next_request_id()
        future = self._tracker.register(request_id, command.method)
        try:
            await self._write(command.encode(request_id))
            response = await asyncio.wait_for(future, timeout=limit)
        except asyncio.TimeoutError as exc:
            raise CommandTimeout(f"{command.describe()} (id={request_id}) timed out after {limit:g}s") from exc
        finally:
            self._tracker.discard(request_id)

        if not response.success:
            raise CommandFailed(f"{command.describe()} failed: {response.error}")
        return response

    async def send_nowait(self, command: DaemonCommand) -> None:
        """Write *command* without tracking a response.

        Raises:
            ChannelClosed: If the process input is gone.
        """
        await self._write(command.encode(next_request_id()))

    async def _write(self, line: str) -> None:
        if self._writer.is_closing():
            raise ChannelClosed("daemon stdin is closed")
        try:
            self._writer.write(line.encode())
            await self._writer.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ChannelClosed(f"daemon stdin is closed: {exc}") from exc
