"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide configuration loaded from environment variables."""

    model_config = {"env_prefix": "FDASH_", "frozen": True}

    # Flutter
    flutter_bin: str = "flutter"
    project_path: str = "."
    # Device specifier for auto-start: "auto", a device id, or part of a device name.
    # Leave blank to only discover devices without launching a session.
    device: str = ""

    # Sessions
    max_sessions: int = 9
    max_logs_per_session: int = 10_000
    # Undrained daemon output buffered per session before its pipes stop being read.
    event_queue_size: int = 1024

    # Daemon command / shutdown timeouts
    command_timeout_seconds: float = 30.0
    stop_app_timeout_seconds: float = 1.0
    daemon_exit_timeout_seconds: float = 2.0
    task_join_timeout_seconds: float = 2.0

    # Device discovery
    device_discovery_timeout_seconds: float = 30.0

    # Engine
    message_queue_size: int = 256
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Build settings from the environment; tests patch this."""
    return Settings()
