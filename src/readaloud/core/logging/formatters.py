"""
Console and JSONL formatters.

    ColoredConsoleFormatter:
        14:30:05 [ INFO  ] (a1b2c3d4) chunk_started index=3 total=40

    JsonlFormatter:
        {"ts":"2026-10-18T14:30:05+02:00","level":2,"tag":"INFO","message":"chunk_started",
         "session_id":"a1b2c3d4","extra":{"index":3,"total":40}}

Colors are disabled when stdout is not a TTY, or when NO_COLOR or
READALOUD_NO_COLOR=1 is set.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "DEBUG": Colors.GRAY,
}

# Transport fields get their own colors so the playhead is easy to follow.
_FIELD_COLORS = {
    "index": Colors.MAGENTA,
    "status": Colors.BLUE,
    "voice": Colors.CYAN,
}


def supports_color() -> bool:
    if os.getenv("READALOUD_NO_COLOR", "0") == "1":
        return False
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


USE_COLORS = supports_color()


def get_tag_color(tag: str) -> str:
    return _TAG_COLORS.get(tag.upper(), Colors.WHITE)


def colorize(text: str, color: str) -> str:
    if not USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """One JSON object per line, for machine parsing (jq, pandas)."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "logger": record.name,
            "session_id": getattr(record, "session_id", "-"),
        }

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Human-readable console lines.

    Format:
        HH:MM:SS [ TAG   ] (sid) message key=value 0.123s
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        sid = getattr(record, "session_id", "-")

        parts = [
            colorize(ts, Colors.DIM),
            colorize(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if sid != "-":
            parts.append(colorize(f"({sid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(colorize(f"{k}={v}", _FIELD_COLORS.get(k, Colors.DIM)))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            parts.append(colorize(f"{seconds:.3f}s", self._timing_color(seconds)))

        return " ".join(parts)

    @staticmethod
    def _timing_color(seconds: float) -> str:
        # thresholds sized for network synthesis round-trips
        if seconds < 0.25:
            return Colors.GREEN
        if seconds < 3.0:
            return Colors.YELLOW
        return Colors.RED
