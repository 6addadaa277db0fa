"""Typed events for the ``flutter run --machine`` line protocol."""

from __future__ import annotations

import json
import logging
from typing import Any, Union

from pydantic import BaseModel, Field, ValidationError

from fdash.shared.enums import LogLevel, LogSource
from fdash.shared.exceptions import ProtocolParseError
from fdash.shared.models import Device, LogEntry

logger = logging.getLogger(__name__)

_FLUTTER_PREFIX = "flutter: "


class _DaemonModel(BaseModel):
    model_config = {"frozen": True, "populate_by_name": True, "extra": "ignore"}


class DaemonConnected(_DaemonModel):
    """``daemon.connected``: first event after the daemon starts."""

    version: str
    pid: int


class DaemonLogMessage(_DaemonModel):
    """``daemon.logMessage``: a log line from the daemon itself."""

    level: str
    message: str
    stack_trace: str | None = Field(default=None, alias="stackTrace")


class AppStart(_DaemonModel):
    """``app.start``: the app is launching on a device."""

    app_id: str = Field(alias="appId")
    device_id: str = Field(alias="deviceId")
    directory: str
    launch_mode: str | None = Field(default=None, alias="launchMode")
    supports_restart: bool = Field(default=True, alias="supportsRestart")


class AppStarted(_DaemonModel):
    """``app.started``: the app finished starting."""

    app_id: str = Field(alias="appId")


class AppStop(_DaemonModel):
    """``app.stop``: the app stopped, possibly with an error."""

    app_id: str = Field(alias="appId")
    error: str | None = None


class AppLog(_DaemonModel):
    """``app.log``: one line printed by the running app."""

    app_id: str = Field(alias="appId")
    log: str
    error: bool = False
    stack_trace: str | None = Field(default=None, alias="stackTrace")


class AppProgress(_DaemonModel):
    """``app.progress``: build/reload progress notifications."""

    app_id: str = Field(alias="appId")
    id: str
    progress_id: str | None = Field(default=None, alias="progressId")
    message: str | None = None
    finished: bool = False


class AppDebugPort(_DaemonModel):
    """``app.debugPort``: the VM service is reachable."""

    app_id: str = Field(alias="appId")
    port: int
    ws_uri: str = Field(alias="wsUri")


class DeviceAdded(_DaemonModel):
    """``device.added``."""

    device: Device


class DeviceRemoved(_DaemonModel):
    """``device.removed``."""

    device: Device


class DaemonResponse(_DaemonModel):
    """A reply to a command we sent, correlated by ``id``."""

    id: int
    result: Any = None
    error: Any = None


class UnknownEvent(_DaemonModel):
    """An event we do not model, or a known event with malformed params."""

    event: str
    params: Any = None


DaemonMessage = Union[
    DaemonConnected,
    DaemonLogMessage,
    AppStart,
    AppStarted,
    AppStop,
    AppLog,
    AppProgress,
    AppDebugPort,
    DeviceAdded,
    DeviceRemoved,
    DaemonResponse,
    UnknownEvent,
]

_EVENT_MODELS: dict[str, type[_DaemonModel]] = {
    "daemon.connected": DaemonConnected,
    "daemon.logMessage": DaemonLogMessage,
    "app.start": AppStart,
    "app.started": AppStarted,
    "app.stop": AppStop,
    "app.log": AppLog,
    "app.progress": AppProgress,
    "app.debugPort": AppDebugPort,
}

_DEVICE_EVENTS: dict[str, type[_DaemonModel]] = {
    "device.added": DeviceAdded,
    "device.removed": DeviceRemoved,
}


def strip_brackets(line: str) -> str | None:
    """Return the content between the outer ``[`` and ``]``, or None."""
    trimmed = line.strip()
    if len(trimmed) >= 2 and trimmed.startswith("[") and trimmed.endswith("]"):
        return trimmed[1:-1]
    return None


def decode_line(line: str) -> dict[str, Any]:
    """Decode one daemon output line into its JSON object.

    Args:
        line: Raw stdout line, with or without the ``[...]`` wrapper.

    Returns:
        The decoded JSON object.

    Raises:
        ProtocolParseError: If the line is not a single JSON object.
    """
    body = strip_brackets(line)
    if body is None:
        body = line.strip()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolParseError(f"not a daemon json line: {line[:120]!r}") from exc
    if not isinstance(payload, dict):
        raise ProtocolParseError(f"daemon line is not an object: {line[:120]!r}")
    return payload


def parse_daemon_line(line: str) -> DaemonMessage | None:
    """Parse one stdout line into a typed DaemonMessage.

    Known events whose params fail validation degrade to UnknownEvent so a
    protocol drift never kills the session.

    Returns:
        The parsed message, or None if the line is not daemon JSON.
    """
    try:
        payload = decode_line(line)
    except ProtocolParseError:
        return None

    event = payload.get("event")
    if isinstance(event, str):
        params = payload.get("params")
        model = _EVENT_MODELS.get(event)
        device_model = _DEVICE_EVENTS.get(event)
        try:
            if model is not None:
                return model.model_validate(params)
            if device_model is not None:
                return device_model(device=Device.model_validate(params))
        except ValidationError as exc:
            logger.debug("malformed %s params, keeping as unknown event: %s", event, exc)
        return UnknownEvent(event=event, params=params)

    if "id" in payload:
        try:
            return DaemonResponse.model_validate(payload)
        except ValidationError:
            logger.debug("response with unusable id: %s", payload.get("id"))
    return None


def is_error(message: DaemonMessage) -> bool:
    if isinstance(message, AppLog):
        return message.error
    if isinstance(message, AppStop):
        return message.error is not None
    if isinstance(message, DaemonResponse):
        return message.error is not None
    return False


def summary(message: DaemonMessage) -> str:
    """Return a one-line human-readable description of *message*."""
    if isinstance(message, DaemonConnected):
        return f"Daemon connected (v{message.version})"
    if isinstance(message, DaemonLogMessage):
        return f"[{message.level}] {message.message}"
    if isinstance(message, AppStart):
        return f"App starting on {message.device_id}"
    if isinstance(message, AppStarted):
        return "App started"
    if isinstance(message, AppStop):
        return f"App stopped: {message.error}" if message.error else "App stopped"
    if isinstance(message, AppLog):
        return message.log
    if isinstance(message, AppProgress):
        return message.message or "Progress..."
    if isinstance(message, AppDebugPort):
        return f"DevTools at port {message.port}"
    if isinstance(message, DeviceAdded):
        return f"Device added: {message.device.name} ({message.device.platform})"
    if isinstance(message, DeviceRemoved):
        return f"Device removed: {message.device.name}"
    if isinstance(message, DaemonResponse):
        return f"Response #{message.id}: {'error' if message.error is not None else 'ok'}"
    return f"Event: {message.event}"


def detect_log_level(text: str) -> LogLevel:
    """Guess a level from keywords in an app log line."""
    lowered = text.lower()
    if any(word in lowered for word in ("exception", "error", "failed", "fatal")):
        return LogLevel.ERROR
    if "warning" in lowered or "deprecated" in lowered:
        return LogLevel.WARNING
    if "debug" in lowered or "trace" in lowered:
        return LogLevel.DEBUG
    return LogLevel.INFO


def detect_raw_line_level(line: str) -> LogLevel:
    """Guess a level for non-JSON output such as Gradle, Xcode or logcat lines."""
    stripped = line.strip()
    lowered = stripped.lower()
    if (
        stripped.startswith("E/")
        or "FAILURE:" in stripped
        or "BUILD FAILED" in stripped
        or "error:" in lowered
        or "❌" in stripped
    ):
        return LogLevel.ERROR
    if stripped.startswith("W/") or "warning:" in lowered or "⚠" in stripped:
        return LogLevel.WARNING
    if stripped.startswith(("Running ", "Building ", "Compiling ")) or "..." in stripped:
        return LogLevel.DEBUG
    return LogLevel.INFO


def _daemon_log_level(level: str) -> LogLevel:
    lowered = level.lower()
    if lowered == "error":
        return LogLevel.ERROR
    if lowered == "warning":
        return LogLevel.WARNING
    if lowered in ("trace", "debug"):
        return LogLevel.DEBUG
    return LogLevel.INFO


def to_log_entry(message: DaemonMessage) -> LogEntry | None:
    """Convert a daemon message into a session log entry.

    Responses, device events, unknown events and unfinished progress
    produce no entry.
    """
    if isinstance(message, AppLog):
        text = message.log.removeprefix(_FLUTTER_PREFIX)
        level = LogLevel.ERROR if message.error else detect_log_level(text)
        return LogEntry(level=level, source=LogSource.APP, message=text, stack_trace=message.stack_trace)
    if isinstance(message, DaemonLogMessage):
        return LogEntry(
            level=_daemon_log_level(message.level),
            source=LogSource.DAEMON,
            message=message.message,
            stack_trace=message.stack_trace,
        )
    if isinstance(message, AppProgress):
        if not message.finished:
            return None
        return LogEntry.debug(LogSource.FLUTTER, summary(message))
    if isinstance(message, AppStop):
        level = LogLevel.ERROR if message.error else LogLevel.WARNING
        return LogEntry(level=level, source=LogSource.APP, message=summary(message))
    if isinstance(message, DaemonConnected):
        return LogEntry.info(LogSource.DAEMON, summary(message))
    if isinstance(message, (AppStart, AppStarted, AppDebugPort)):
        return LogEntry.info(LogSource.APP, summary(message))
    return None
