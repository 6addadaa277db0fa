"""Frozen Pydantic domain models shared by all modules."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from fdash.shared.enums import BuildMode, LogLevel, LogSource

_PLATFORM_PREFIXES: tuple[tuple[str, str], ...] = (
    ("ios", "ios"),
    ("android", "android"),
    ("web", "web"),
    ("darwin", "macos"),
    ("macos", "macos"),
    ("linux", "linux"),
    ("windows", "windows"),
    ("fuchsia", "fuchsia"),
)


def utc_now() -> datetime:
    """Return timezone-aware UTC timestamps for model defaults."""
    return datetime.now(timezone.utc)


class Device(BaseModel):
    """A device reported by ``flutter devices --machine`` or ``device.added``."""

    model_config = {"frozen": True, "populate_by_name": True, "extra": "ignore"}

    id: str
    name: str
    platform: str = Field(default="unknown", alias="targetPlatform")
    emulator: bool = False
    category: str | None = None
    platform_type: str | None = Field(default=None, alias="platformType")
    ephemeral: bool = True
    emulator_id: str | None = Field(default=None, alias="emulatorId")

    def display_name(self) -> str:
        if not self.emulator:
            return self.name
        kind = "simulator" if self.platform_short() == "ios" else "emulator"
        return f"{self.name} ({kind})"

    def platform_short(self) -> str:
        """Collapse Flutter's target platform string to a short family name.

        ``android-arm64`` becomes ``android``, ``web-javascript`` becomes
        ``web`` and ``darwin`` becomes ``macos``.
        """
        lowered = self.platform.lower()
        for prefix, short in _PLATFORM_PREFIXES:
            if lowered.startswith(prefix):
                return short
        return lowered

    def matches(self, specifier: str) -> bool:
        """Return True if *specifier* is this device's id or part of its name."""
        if self.id == specifier:
            return True
        return bool(specifier) and specifier.lower() in self.name.lower()


class LaunchConfig(BaseModel):
    """A resolved launch configuration for one ``flutter run`` invocation."""

    model_config = {"frozen": True}

    name: str = "Default"
    device: str = "auto"
    mode: BuildMode = BuildMode.DEBUG
    flavor: str | None = None
    entry_point: str | None = None
    dart_defines: dict[str, str] = Field(default_factory=dict)
    extra_args: list[str] = Field(default_factory=list)
    auto_start: bool = False

    def build_flutter_args(self, device_id: str) -> list[str]:
        """Build the argument list for ``flutter`` (without the binary).

        Args:
            device_id: Concrete device id to pass to ``-d``.

        Returns:
            Arguments starting with ``run --machine``.
        """
        args = ["run", "--machine", "-d", device_id]
        if self.mode is not BuildMode.DEBUG:
            args.append(f"--{self.mode.value}")
        if self.flavor:
            args.extend(["--flavor", self.flavor])
        if self.entry_point:
            args.extend(["-t", self.entry_point])
        for key, value in self.dart_defines.items():
            args.append(f"--dart-define={key}={value}")
        args.extend(self.extra_args)
        return args


class LogEntry(BaseModel):
    """One line in a session's log pane."""

    model_config = {"frozen": True}

    timestamp: datetime = Field(default_factory=utc_now)
    level: LogLevel = LogLevel.INFO
    source: LogSource = LogSource.APP
    message: str
    stack_trace: str | None = None

    @classmethod
    def info(cls, source: LogSource, message: str) -> LogEntry:
        return cls(level=LogLevel.INFO, source=source, message=message)

    @classmethod
    def warning(cls, source: LogSource, message: str) -> LogEntry:
        return cls(level=LogLevel.WARNING, source=source, message=message)

    @classmethod
    def error(cls, source: LogSource, message: str) -> LogEntry:
        return cls(level=LogLevel.ERROR, source=source, message=message)

    @classmethod
    def debug(cls, source: LogSource, message: str) -> LogEntry:
        return cls(level=LogLevel.DEBUG, source=source, message=message)
