"""
Configuration Management for readaloud.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (READALOUD_SYNTH_URL, READALOUD_API_KEY, ...)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    playback:
      prefetch_window: 3
      output: sounddevice

    synthesis:
      base_url: http://127.0.0.1:8000
      model: tts-1
      voices: [Zephyr, Puck, Kore]

    library:
      base_dir: ./library
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple
import os
import yaml


class ConfigValidationError(Exception):
    """Raised when a configuration value is out of bounds or of the wrong type."""
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Playback: prefetch window, rate bounds, audio output backend
        - Synthesis: speech endpoint, voices, PCM format
        - Library: book storage and thumbnails
        - Logging: level and preview length
        - API: local control server
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Playback
    # ─────────────────────────────────────────────────────────────────────────
    PLAYBACK_PREFETCH_WINDOW = 3        # Chunks synthesized ahead of the playhead
    PLAYBACK_DEFAULT_RATE = 1.0
    PLAYBACK_MIN_RATE = 0.5
    PLAYBACK_MAX_RATE = 2.0
    PLAYBACK_OUTPUT = "sounddevice"     # sounddevice | virtual

    # ─────────────────────────────────────────────────────────────────────────
    # Synthesis
    # ─────────────────────────────────────────────────────────────────────────
    SYNTH_BASE_URL = "https://api.openai.com"
    SYNTH_MODEL = "gpt-4o-mini-tts"
    SYNTH_REQUIRE_API_KEY = True
    SYNTH_TIMEOUT_S = 60.0
    SYNTH_SAMPLE_RATE = 24000           # PCM responses are 24 kHz mono s16le
    SYNTH_VOICES: Tuple[str, ...] = (
        "Zephyr", "Puck", "Charon", "Kore", "Fenrir", "Leda", "Orus", "Aoede",
    )

    # ─────────────────────────────────────────────────────────────────────────
    # Library
    # ─────────────────────────────────────────────────────────────────────────
    LIBRARY_BASE_DIR = "./library"
    LIBRARY_THUMBNAIL_SCALE = 0.5
    LIBRARY_THUMBNAIL_QUALITY = 70

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 60
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG

    # ─────────────────────────────────────────────────────────────────────────
    # Local API
    # ─────────────────────────────────────────────────────────────────────────
    API_HOST = "127.0.0.1"
    API_PORT = 8765


OUTPUT_BACKENDS = ("sounddevice", "virtual")


@dataclass
class PlaybackConfig:
    """Prefetch window, rate bounds and which audio output drives playback."""
    prefetch_window: int = Defaults.PLAYBACK_PREFETCH_WINDOW
    default_rate: float = Defaults.PLAYBACK_DEFAULT_RATE
    min_rate: float = Defaults.PLAYBACK_MIN_RATE
    max_rate: float = Defaults.PLAYBACK_MAX_RATE
    output: str = Defaults.PLAYBACK_OUTPUT


@dataclass
class SynthesisConfig:
    """
    Speech synthesis endpoint configuration.

    The endpoint must speak the OpenAI audio/speech dialect. The API key is
    read from settings or the READALOUD_API_KEY environment variable.
    """
    base_url: str = Defaults.SYNTH_BASE_URL
    model: str = Defaults.SYNTH_MODEL
    api_key: str = ""
    require_api_key: bool = Defaults.SYNTH_REQUIRE_API_KEY
    timeout_s: float = Defaults.SYNTH_TIMEOUT_S
    sample_rate: int = Defaults.SYNTH_SAMPLE_RATE
    voices: List[str] = field(default_factory=lambda: list(Defaults.SYNTH_VOICES))
    default_voice: str = Defaults.SYNTH_VOICES[0]


@dataclass
class LibraryConfig:
    """Where books, positions and thumbnails live on disk."""
    base_dir: str = Defaults.LIBRARY_BASE_DIR
    thumbnail_scale: float = Defaults.LIBRARY_THUMBNAIL_SCALE
    thumbnail_quality: int = Defaults.LIBRARY_THUMBNAIL_QUALITY


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, failures only
        2 = NORMAL: Transport actions, cache status (default)
        3 = VERBOSE: Prefetch scheduling, timings
        4 = DEBUG: Internal state
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class ApiConfig:
    host: str = Defaults.API_HOST
    port: int = Defaults.API_PORT


@dataclass
class ReaderConfig:
    """
    Validated configuration for the reader.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = ReaderConfig.from_settings(settings)
        print(config.playback.prefetch_window)
    """
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ReaderConfig":
        """
        Create ReaderConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated ReaderConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Playback
        # ─────────────────────────────────────────────────────────────────────
        playback_raw = raw.get("playback", {}) or {}
        playback = PlaybackConfig(
            prefetch_window=int(playback_raw.get("prefetch_window", Defaults.PLAYBACK_PREFETCH_WINDOW)),
            default_rate=float(playback_raw.get("default_rate", Defaults.PLAYBACK_DEFAULT_RATE)),
            min_rate=float(playback_raw.get("min_rate", Defaults.PLAYBACK_MIN_RATE)),
            max_rate=float(playback_raw.get("max_rate", Defaults.PLAYBACK_MAX_RATE)),
            output=str(playback_raw.get("output", Defaults.PLAYBACK_OUTPUT)).strip().lower(),
        )
        cls._validate_non_negative("playback.prefetch_window", playback.prefetch_window)
        cls._validate_positive("playback.min_rate", playback.min_rate)
        cls._validate_range("playback.max_rate", playback.max_rate, playback.min_rate, 16.0)
        cls._validate_range("playback.default_rate", playback.default_rate, playback.min_rate, playback.max_rate)
        if playback.output not in OUTPUT_BACKENDS:
            raise ConfigValidationError(
                f"playback.output must be one of {', '.join(OUTPUT_BACKENDS)}, got {playback.output!r}"
            )

        # ─────────────────────────────────────────────────────────────────────
        # Synthesis
        # ─────────────────────────────────────────────────────────────────────
        synth_raw = raw.get("synthesis", {}) or {}
        voices = synth_raw.get("voices") or list(Defaults.SYNTH_VOICES)
        if isinstance(voices, str):
            voices = [v.strip() for v in voices.split(",") if v.strip()]
        voices = [str(v) for v in voices]
        if not voices:
            raise ConfigValidationError("synthesis.voices must not be empty")

        synthesis = SynthesisConfig(
            base_url=str(synth_raw.get("base_url", Defaults.SYNTH_BASE_URL)).rstrip("/"),
            model=str(synth_raw.get("model", Defaults.SYNTH_MODEL)),
            api_key=str(synth_raw.get("api_key") or ""),
            require_api_key=bool(synth_raw.get("require_api_key", Defaults.SYNTH_REQUIRE_API_KEY)),
            timeout_s=float(synth_raw.get("timeout_s", Defaults.SYNTH_TIMEOUT_S)),
            sample_rate=int(synth_raw.get("sample_rate", Defaults.SYNTH_SAMPLE_RATE)),
            voices=voices,
            default_voice=str(synth_raw.get("default_voice") or voices[0]),
        )
        cls._validate_positive("synthesis.timeout_s", synthesis.timeout_s)
        cls._validate_positive("synthesis.sample_rate", synthesis.sample_rate)
        if synthesis.default_voice not in synthesis.voices:
            raise ConfigValidationError(
                f"synthesis.default_voice {synthesis.default_voice!r} is not in synthesis.voices"
            )

        # ─────────────────────────────────────────────────────────────────────
        # Library
        # ─────────────────────────────────────────────────────────────────────
        library_raw = raw.get("library", {}) or {}
        library = LibraryConfig(
            base_dir=str(library_raw.get("base_dir", Defaults.LIBRARY_BASE_DIR)),
            thumbnail_scale=float(library_raw.get("thumbnail_scale", Defaults.LIBRARY_THUMBNAIL_SCALE)),
            thumbnail_quality=int(library_raw.get("thumbnail_quality", Defaults.LIBRARY_THUMBNAIL_QUALITY)),
        )
        cls._validate_positive("library.thumbnail_scale", library.thumbnail_scale)
        cls._validate_range("library.thumbnail_quality", library.thumbnail_quality, 1, 100)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Accept level names as well as numbers
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        # ─────────────────────────────────────────────────────────────────────
        # API
        # ─────────────────────────────────────────────────────────────────────
        api_raw = raw.get("api", {}) or {}
        api = ApiConfig(
            host=str(api_raw.get("host", Defaults.API_HOST)),
            port=int(api_raw.get("port", Defaults.API_PORT)),
        )
        cls._validate_range("api.port", api.port, 1, 65535)

        return cls(
            playback=playback,
            synthesis=synthesis,
            library=library,
            logging=logging_cfg,
            api=api,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_reader_config() for the validated, typed view.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    def get_reader_config(self) -> ReaderConfig:
        """
        Get validated ReaderConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return ReaderConfig.from_settings(self)


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Environment variables win over the YAML file."""
    url = os.getenv("READALOUD_SYNTH_URL")
    if url:
        raw.setdefault("synthesis", {})["base_url"] = url
    key = os.getenv("READALOUD_API_KEY")
    if key:
        raw.setdefault("synthesis", {})["api_key"] = key
    library_dir = os.getenv("READALOUD_LIBRARY_DIR")
    if library_dir:
        raw.setdefault("library", {})["base_dir"] = library_dir
    output = os.getenv("READALOUD_OUTPUT")
    if output:
        raw.setdefault("playback", {})["output"] = output
    return raw


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides:
        - READALOUD_SYNTH_URL: synthesis.base_url
        - READALOUD_API_KEY: synthesis.api_key
        - READALOUD_LIBRARY_DIR: library.base_dir
        - READALOUD_OUTPUT: playback.output

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=_apply_env_overrides(raw))


def default_settings() -> Settings:
    """Settings built from defaults plus environment overrides only."""
    return Settings(raw=_apply_env_overrides({}))
