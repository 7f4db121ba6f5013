"""
FastAPI Dependency Providers.

    get_settings()        - settings from READALOUD_SETTINGS or
                            config/settings.yaml, defaults if absent
    get_reader_service()  - singleton ReaderService

Usage in route handlers:
    @router.get("/v1/books")
    async def books(service: ReaderService = Depends(get_reader_service)):
        return service.list_books()
"""
from __future__ import annotations

import os
from functools import lru_cache

from readaloud.core.config import Settings, default_settings, load_settings
from readaloud.core.logging import get_logger, info
from readaloud.services.reader_service import ReaderService, get_service

_LOG = get_logger("readaloud.api")

DEFAULT_SETTINGS_PATH = "config/settings.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache application settings."""
    path = os.getenv("READALOUD_SETTINGS", DEFAULT_SETTINGS_PATH)
    try:
        return load_settings(path)
    except FileNotFoundError:
        info(_LOG, "settings_defaults", path=path)
        return default_settings()


def get_reader_service() -> ReaderService:
    return get_service(get_settings())
