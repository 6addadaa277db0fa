"""Tests for daemon commands, RequestTracker and CommandChannel."""

from __future__ import annotations

import asyncio
import json
import time

import pytest

from fdash.daemon.commands import CommandChannel, DaemonCommand, RequestTracker, next_request_id
from fdash.daemon.protocol import DaemonResponse
from fdash.shared.exceptions import ChannelClosed, CommandFailed, CommandTimeout


class RecordingWriter:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self.closing = False
        self.broken = False

    def write(self, data: bytes) -> None:
        if self.broken:
            raise BrokenPipeError("pipe closed")
        self.lines.append(data.decode())

    async def drain(self) -> None:
        return None

    def is_closing(self) -> bool:
        return self.closing

    def last_command(self) -> dict:
        return json.loads(self.lines[-1])[0]


class TestDaemonCommand:
    def test_reload(self) -> None:
        cmd = DaemonCommand.reload("app-1")

        assert cmd.method == "app.restart"
        assert cmd.params == {"appId": "app-1", "fullRestart": False, "pause": False}
        assert cmd.describe() == "hot reload"

    def test_restart(self) -> None:
        cmd = DaemonCommand.restart("app-1")

        assert cmd.params["fullRestart"] is True
        assert cmd.describe() == "hot restart"

    def test_stop_and_daemon_commands(self) -> None:
        assert DaemonCommand.stop("a").method == "app.stop"
        assert DaemonCommand.stop("a").describe() == "stop app"
        assert DaemonCommand.shutdown().method == "daemon.shutdown"
        assert DaemonCommand.version().method == "daemon.version"
        assert DaemonCommand.enable_devices().method == "device.enable"
        assert DaemonCommand.get_devices().method == "device.getDevices"
        assert DaemonCommand.screenshot("a").params == {"appId": "a"}

    def test_encode(self) -> None:
        line = DaemonCommand.stop("abc").encode(7)

        assert line == '[{"id":7,"method":"app.stop","params":{"appId":"abc"}}]\n'

    def test_request_ids_increase(self) -> None:
        first = next_request_id()
        second = next_request_id()
        assert second == first + 1


class TestRequestTracker:
    async def test_register_and_resolve(self) -> None:
        tracker = RequestTracker()
        future = tracker.register(1, "app.restart")

        matched = tracker.handle_response(DaemonResponse(id=1, result={"code": 0}))

        assert matched
        response = await future
        assert response.success
        assert response.result == {"code": 0}
        assert tracker.pending_count() == 0

    async def test_unknown_response(self) -> None:
        tracker = RequestTracker()
        assert not tracker.handle_response(DaemonResponse(id=99))

    async def test_error_response(self) -> None:
        tracker = RequestTracker()
        future = tracker.register(5, "app.stop")

        tracker.handle_response(DaemonResponse(id=5, error="no such app"))

        response = await future
        assert not response.success
        assert response.error == "no such app"

    async def test_cancel_all(self) -> None:
        tracker = RequestTracker()
        first = tracker.register(1, "a")
        second = tracker.register(2, "b")

        assert tracker.cancel_all() == 2

        with pytest.raises(ChannelClosed):
            await first
        with pytest.raises(ChannelClosed):
            await second
        assert tracker.pending_count() == 0


class TestCommandChannel:
    async def test_send_resolves_on_response(self) -> None:
        writer = RecordingWriter()
        tracker = RequestTracker()
        channel = CommandChannel(writer=writer, tracker=tracker)

        send = asyncio.create_task(channel.send(DaemonCommand.reload("app-1"), timeout=1.0))
        await asyncio.sleep(0)
        request_id = writer.last_command()["id"]
        tracker.handle_response(DaemonResponse(id=request_id, result={"code": 0}))

        response = await send
        assert response.id == request_id
        assert tracker.pending_count() == 0

    async def test_timeout_returns_quickly(self) -> None:
        writer = RecordingWriter()
        tracker = RequestTracker()
        channel = CommandChannel(writer=writer, tracker=tracker, default_timeout=5.0)

        started = time.monotonic()
        with pytest.raises(CommandTimeout, match="timed out after 1s"):
            await channel.send(DaemonCommand.reload("app-1"), timeout=1.0)
        elapsed = time.monotonic() - started

        assert 0.9 <= elapsed < 2.0
        assert tracker.pending_count() == 0
        assert len(writer.lines) == 1

    async def test_daemon_error_raises(self) -> None:
        writer = RecordingWriter()
        tracker = RequestTracker()
        channel = CommandChannel(writer=writer, tracker=tracker)

        send = asyncio.create_task(channel.send(DaemonCommand.stop("x"), timeout=1.0))
        await asyncio.sleep(0)
        tracker.handle_response(DaemonResponse(id=writer.last_command()["id"], error="app not found"))

        with pytest.raises(CommandFailed, match="app not found"):
            await send

    async def test_closed_writer(self) -> None:
        writer = RecordingWriter()
        writer.closing = True
        channel = CommandChannel(writer=writer, tracker=RequestTracker())

        assert channel.is_closed()
        with pytest.raises(ChannelClosed):
            await channel.send(DaemonCommand.version(), timeout=1.0)

    async def test_broken_pipe(self) -> None:
        writer = RecordingWriter()
        writer.broken = True
        tracker = RequestTracker()
        channel = CommandChannel(writer=writer, tracker=tracker)

        with pytest.raises(ChannelClosed, match="pipe closed"):
            await channel.send(DaemonCommand.version(), timeout=1.0)
        assert tracker.pending_count() == 0

    async def test_send_nowait_untracked(self) -> None:
        writer = RecordingWriter()
        tracker = RequestTracker()
        channel = CommandChannel(writer=writer, tracker=tracker)

        await channel.send_nowait(DaemonCommand.shutdown())

        assert writer.last_command()["method"] == "daemon.shutdown"
        assert tracker.pending_count() == 0
