"""Shared pytest fixtures for the fdash test suite."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from fdash.config import Settings
from fdash.shared.models import Device, LaunchConfig


class FakeStdin:
    """Records every command line written to the daemon."""

    def __init__(self, on_command: Callable[[dict[str, Any]], None]) -> None:
        self.commands: list[dict[str, Any]] = []
        self.closed = False
        self._on_command = on_command

    def write(self, data: bytes) -> None:
        for raw in data.decode().splitlines():
            command = json.loads(raw)[0]
            self.commands.append(command)
            self._on_command(command)

    async def drain(self) -> None:
        return None

    def is_closing(self) -> bool:
        return self.closed

    def methods(self) -> list[str]:
        return [command["method"] for command in self.commands]


class FakeProcess:
    """Stands in for ``asyncio.subprocess.Process`` running ``flutter run --machine``.

    Args:
        respond: Answer every command with a success response.
        exit_on_shutdown: Exit when ``daemon.shutdown`` is written.
        exit_on_kill: Exit when killed.
    """

    def __init__(
        self,
        *,
        pid: int = 4242,
        respond: bool = True,
        exit_on_shutdown: bool = True,
        exit_on_kill: bool = True,
    ) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdin = FakeStdin(self._on_command)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.kill_count = 0
        self.respond = respond
        self.exit_on_shutdown = exit_on_shutdown
        self.exit_on_kill = exit_on_kill
        self._exited = asyncio.Event()

    def emit(self, payload: dict[str, Any]) -> None:
        self.stdout.feed_data(("[" + json.dumps(payload) + "]\n").encode())

    def emit_event(self, event: str, params: dict[str, Any]) -> None:
        self.emit({"event": event, "params": params})

    def emit_raw(self, line: str) -> None:
        self.stdout.feed_data((line + "\n").encode())

    def emit_stderr(self, line: str) -> None:
        self.stderr.feed_data((line + "\n").encode())

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdin.closed = True
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def kill(self) -> None:
        self.kill_count += 1
        if self.exit_on_kill:
            self.exit(-9)

    def _on_command(self, command: dict[str, Any]) -> None:
        if self.respond:
            self.emit({"id": command["id"], "result": {"code": 0}})
        if command["method"] == "daemon.shutdown" and self.exit_on_shutdown:
            self.exit(0)


@pytest.fixture()
def settings() -> Settings:
    """Return a Settings instance with short timeouts for tests."""
    return Settings(
        flutter_bin="flutter",
        project_path="/tmp/fdash-test",
        command_timeout_seconds=1.0,
        stop_app_timeout_seconds=0.2,
        daemon_exit_timeout_seconds=0.3,
        task_join_timeout_seconds=0.5,
        device_discovery_timeout_seconds=1.0,
    )


@pytest.fixture()
def make_process() -> Callable[..., FakeProcess]:
    """Factory for fake daemon processes; call it inside the running event loop."""
    return FakeProcess


@pytest.fixture()
def device_a() -> Device:
    return Device(id="emulator-5554", name="Pixel 7", platform="android-arm64", emulator=True)


@pytest.fixture()
def device_b() -> Device:
    return Device(id="00008101-AAAA", name="iPhone 15", platform="ios", emulator=False)


@pytest.fixture()
def device_c() -> Device:
    return Device(id="macos", name="macOS", platform="darwin", emulator=False)


@pytest.fixture()
def launch_config() -> LaunchConfig:
    return LaunchConfig(name="Staging", flavor="staging", dart_defines={"API": "https://staging"})
