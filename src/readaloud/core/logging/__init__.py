"""
readaloud Structured Logging.

Numeric verbosity levels (1-4), colored console output, optional JSONL
file output, and a session id attached to every line emitted while a
book is open.

Usage:
    from readaloud.core.logging import get_logger, info, warn, verbose

    log = get_logger("readaloud.mymodule")

    info(log, "chunk_started", index=3, total=40)
    warn(log, "position_save_failed", book_id=7, error="disk full")
    verbose(log, "prefetch_scheduled", indices=[4, 5, 6])

Configuration:
    export READALOUD_LOG_LEVEL=3     # VERBOSE
    export READALOUD_LOG_DIR=logs    # also write logs/readaloud.jsonl
    export READALOUD_NO_COLOR=1
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from . import formatters
from .context import (
    get_level,
    get_level_name,
    get_log_config,
    get_session_id,
    is_configured,
    read_logging_config,
    set_configured,
    set_level,
    set_log_config,
    set_session_id,
)
from .formatters import ColoredConsoleFormatter, Colors, JsonlFormatter, supports_color
from .levels import LEVEL_MAP, LEVEL_NAMES, LogLevel, coerce_level


def configure_logging(level: Optional[int | str | LogLevel] = None, force: bool = False) -> None:
    """
    Configure root logging handlers.

    Args:
        level: Log level (1-4, level name, or LogLevel). Falls back to the
            resolved logging config, then NORMAL.
        force: Reconfigure even if already configured.
    """
    if is_configured() and not force:
        return

    formatters.USE_COLORS = supports_color()

    log_config = read_logging_config()
    set_log_config(log_config)

    current_level = coerce_level(level or log_config.get("level", LogLevel.NORMAL))
    set_level(current_level)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG - 10)  # filtering happens in handlers
    root.handlers = []

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(LEVEL_MAP.get(current_level, logging.INFO))
    console.setFormatter(ColoredConsoleFormatter())
    root.addHandler(console)

    log_dir = log_config.get("log_dir")
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            Path(log_dir) / str(log_config.get("jsonl_file", "readaloud.jsonl")),
            maxBytes=int(log_config.get("rotate_max_bytes", 10 * 1024 * 1024)),
            backupCount=int(log_config.get("rotate_backup_count", 5)),
            encoding="utf-8",
            delay=True,
        )
        file_handler.setLevel(logging.DEBUG - 10)
        file_handler.setFormatter(JsonlFormatter())
        root.addHandler(file_handler)

    set_configured(True)


def _log(
    logger: logging.Logger,
    level: int,
    tag: str,
    msg: str,
    numeric_level: int = 2,
    **fields: Any
) -> None:
    if numeric_level > get_level():
        return

    seconds = fields.pop("seconds", None)
    logger.log(
        level,
        msg,
        extra={
            "tag": tag,
            "session_id": get_session_id(),
            "seconds": seconds,
            "extra_data": fields or None,
            "numeric_level": numeric_level,
        },
    )


def get_logger(name: str = "readaloud") -> logging.Logger:
    """Get a logger instance, configuring logging on first use."""
    configure_logging()
    return logging.getLogger(name)


def info(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 2 (NORMAL)."""
    _log(logger, logging.INFO, "INFO", msg, numeric_level=2, **fields)


def warn(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 2 (NORMAL)."""
    _log(logger, logging.WARNING, "WARN", msg, numeric_level=2, **fields)


def error(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 1 (MINIMAL)."""
    _log(logger, logging.ERROR, "ERROR", msg, numeric_level=1, **fields)


def success(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 2 (NORMAL)."""
    _log(logger, logging.INFO, "SUCCESS", msg, numeric_level=2, **fields)


def fail(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 1 (MINIMAL)."""
    _log(logger, logging.ERROR, "FAIL", msg, numeric_level=1, **fields)


def verbose(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 3 (VERBOSE)."""
    _log(logger, logging.DEBUG, "INFO", msg, numeric_level=3, **fields)


def debug(logger: logging.Logger, msg: str, **fields: Any) -> None:
    """Level 4 (DEBUG)."""
    _log(logger, logging.DEBUG - 5, "DEBUG", msg, numeric_level=4, **fields)


__all__ = [
    "LogLevel",
    "LEVEL_MAP",
    "LEVEL_NAMES",
    "coerce_level",
    "Colors",
    "supports_color",
    "get_session_id",
    "set_session_id",
    "get_level",
    "get_level_name",
    "get_log_config",
    "JsonlFormatter",
    "ColoredConsoleFormatter",
    "configure_logging",
    "get_logger",
    "info",
    "warn",
    "error",
    "success",
    "fail",
    "verbose",
    "debug",
]
