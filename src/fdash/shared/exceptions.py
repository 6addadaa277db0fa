"""Hierarchical exception types for the fdash session engine."""

from __future__ import annotations


class FdashError(Exception):
    """Base exception for all fdash errors."""


# ── Sessions ────────────────────────────────────────────────────


class SessionError(FdashError):
    """Session bookkeeping error."""


class CapacityExceeded(SessionError):
    """No room for another concurrent session."""


class SessionNotFound(SessionError):
    """Session id is unknown or already removed."""


# ── Daemon process ──────────────────────────────────────────────


class DaemonError(FdashError):
    """Flutter daemon process or protocol error."""


class ProcessSpawnError(DaemonError):
    """The daemon process could not be started."""


class FlutterNotFoundError(ProcessSpawnError):
    """The flutter binary is not on PATH."""


class NoProjectError(ProcessSpawnError):
    """The project directory has no pubspec.yaml."""


class CommandTimeout(DaemonError):
    """No matching response arrived before the command timeout."""


class CommandFailed(DaemonError):
    """The daemon answered a command with an error."""


class ChannelClosed(DaemonError):
    """The daemon's stdin or stdout is gone."""


class ProtocolParseError(DaemonError):
    """A daemon output line could not be parsed."""


# ── Devices ─────────────────────────────────────────────────────


class DeviceError(FdashError):
    """Device discovery or boot error."""


class DeviceDiscoveryError(DeviceError):
    """``flutter devices`` failed or returned unparseable output."""


class DeviceBootError(DeviceError):
    """Booting a simulator or emulator failed."""
