"""
Logging context and configuration state.

The session id lives in a ContextVar so every log line emitted while a
reader session is active (including its prefetch tasks, which copy the
context when created) carries the same correlation id.

Environment Variables:
    - READALOUD_LOG_LEVEL: Override log level (1-4 or name)
    - READALOUD_LOG_DIR: Directory for the JSONL log file
    - READALOUD_JSONL_FILE: JSONL filename
    - READALOUD_LOG_ROTATE_BYTES / READALOUD_LOG_ROTATE_BACKUP: rotation
    - READALOUD_SETTINGS: settings file consulted for the logging section
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

_session_id: ContextVar[str] = ContextVar("session_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_session_id() -> str:
    """Session id of the current context, "-" outside a session."""
    return _session_id.get()


def set_session_id(sid: str) -> None:
    _session_id.set(sid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve the logging configuration.

    Priority (highest to lowest):
        1. READALOUD_LOG_* environment variables
        2. logging section of the settings file
        3. defaults
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("READALOUD_SETTINGS", "config/settings.yaml")
    try:
        from readaloud.core.config import load_settings
        settings = load_settings(settings_path)
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, yaml.YAMLError):
        # No usable settings file, keep defaults
        pass

    if os.getenv("READALOUD_LOG_LEVEL"):
        cfg["level"] = os.environ["READALOUD_LOG_LEVEL"]
    if os.getenv("READALOUD_LOG_DIR"):
        cfg["log_dir"] = os.environ["READALOUD_LOG_DIR"]
    if os.getenv("READALOUD_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["READALOUD_JSONL_FILE"]
    for env_name, key in (
        ("READALOUD_LOG_ROTATE_BYTES", "rotate_max_bytes"),
        ("READALOUD_LOG_ROTATE_BACKUP", "rotate_backup_count"),
    ):
        value = os.getenv(env_name)
        if value:
            try:
                cfg[key] = int(value)
            except ValueError:
                pass  # ignore garbage, keep default

    return cfg
