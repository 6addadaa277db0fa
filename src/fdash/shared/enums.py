"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class AppPhase(str, Enum):
    """Lifecycle phases for one session's Flutter app."""

    INITIALIZING = "initializing"
    RUNNING = "running"
    RELOADING = "reloading"
    STOPPED = "stopped"


@unique
class LogLevel(str, Enum):
    """Severity of a session log entry."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@unique
class LogSource(str, Enum):
    """Where a session log entry came from."""

    APP = "app"
    DAEMON = "daemon"
    FLUTTER = "flutter"
    FLUTTER_ERROR = "flutter_error"
    WATCHER = "watcher"


@unique
class BuildMode(str, Enum):
    """Flutter build modes accepted by ``flutter run``."""

    DEBUG = "debug"
    PROFILE = "profile"
    RELEASE = "release"


@unique
class TaskKind(str, Enum):
    """Per-session daemon operations the executor can run."""

    RELOAD = "reload"
    RESTART = "restart"
    STOP = "stop"
