"""Tests for the logging level system, formatters and JSONL persistence."""
from __future__ import annotations

import json
import logging


class TestLogLevelEnum:
    """LogLevel enum values."""

    def test_level_enum_values(self):
        from readaloud.core.logging import LogLevel

        assert LogLevel.MINIMAL == 1
        assert LogLevel.NORMAL == 2
        assert LogLevel.VERBOSE == 3
        assert LogLevel.DEBUG == 4

    def test_level_map(self):
        """Numeric levels map onto stdlib levels."""
        from readaloud.core.logging import LEVEL_MAP, LogLevel

        assert LEVEL_MAP[LogLevel.MINIMAL] == logging.WARNING
        assert LEVEL_MAP[LogLevel.NORMAL] == logging.INFO
        assert LEVEL_MAP[LogLevel.VERBOSE] == logging.DEBUG


class TestLevelCoercion:
    """Level coercion from various input types."""

    def test_from_int_and_names(self):
        from readaloud.core.logging import LogLevel, coerce_level

        assert coerce_level(3) == LogLevel.VERBOSE
        assert coerce_level("debug") == LogLevel.DEBUG
        assert coerce_level("INFO") == LogLevel.NORMAL
        assert coerce_level("2") == LogLevel.NORMAL
        assert coerce_level(logging.WARNING) == LogLevel.MINIMAL

    def test_invalid_defaults_to_normal(self):
        from readaloud.core.logging import LogLevel, coerce_level

        assert coerce_level("loud") == LogLevel.NORMAL
        assert coerce_level(None) == LogLevel.NORMAL


class TestFormatters:
    """Console and JSONL formatters."""

    def _record(self, **extra):
        record = logging.LogRecord("readaloud.test", logging.INFO, __file__, 1, "chunk_started", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_console_format(self, monkeypatch):
        from readaloud.core.logging import ColoredConsoleFormatter, formatters

        monkeypatch.setattr(formatters, "USE_COLORS", False)
        line = ColoredConsoleFormatter().format(self._record(
            tag="INFO", session_id="abc123", extra_data={"index": 3}, seconds=0.5,
        ))
        assert "[ INFO  ]" in line
        assert "(abc123)" in line
        assert "chunk_started index=3 0.500s" in line

    def test_console_hides_empty_session(self, monkeypatch):
        from readaloud.core.logging import ColoredConsoleFormatter, formatters

        monkeypatch.setattr(formatters, "USE_COLORS", False)
        line = ColoredConsoleFormatter().format(self._record(tag="WARN", session_id="-"))
        assert "(-)" not in line

    def test_jsonl_format(self):
        from readaloud.core.logging import JsonlFormatter

        payload = json.loads(JsonlFormatter().format(self._record(
            tag="INFO", numeric_level=2, session_id="abc123", extra_data={"index": 3}, seconds=0.25,
        )))
        assert payload["message"] == "chunk_started"
        assert payload["session_id"] == "abc123"
        assert payload["extra"] == {"index": 3}
        assert payload["seconds"] == 0.25

    def test_no_color_env(self, monkeypatch):
        from readaloud.core.logging import supports_color

        monkeypatch.setenv("READALOUD_NO_COLOR", "1")
        assert supports_color() is False
        monkeypatch.delenv("READALOUD_NO_COLOR")
        monkeypatch.setenv("NO_COLOR", "1")
        assert supports_color() is False


def test_logging_jsonl_persistence(tmp_path, monkeypatch):
    from readaloud.core.logging import configure_logging, get_logger, info, set_session_id, verbose

    monkeypatch.setenv("READALOUD_LOG_DIR", str(tmp_path))
    monkeypatch.setenv("READALOUD_JSONL_FILE", "test.jsonl")
    monkeypatch.setenv("READALOUD_LOG_LEVEL", "NORMAL")

    try:
        configure_logging(force=True)
        log = get_logger("readaloud.test")
        set_session_id("sess-1")
        info(log, "opened", book_id=4)
        verbose(log, "hidden_at_normal")

        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (tmp_path / "test.jsonl").read_text(encoding="utf-8").strip().splitlines()
        payloads = [json.loads(line) for line in lines]
        assert [p["message"] for p in payloads] == ["opened"]
        assert payloads[0]["session_id"] == "sess-1"
        assert payloads[0]["extra"]["book_id"] == 4
    finally:
        set_session_id("-")
        for handler in logging.getLogger().handlers:
            handler.close()
        for name in ("READALOUD_LOG_DIR", "READALOUD_JSONL_FILE", "READALOUD_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        configure_logging(force=True)
