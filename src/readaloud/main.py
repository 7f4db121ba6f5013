"""
FastAPI Application Entry Point.

Creates the local control API for readaloud. On shutdown the open book is
closed, which stops playback and releases all cached audio.

Usage:
    uvicorn readaloud.main:app --host 127.0.0.1 --port 8765

    readaloud --serve
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from readaloud import __version__
from readaloud.api.dependencies import get_reader_service
from readaloud.api.routes import router
from readaloud.core.logging import configure_logging, get_logger, info

_LOG = get_logger("readaloud.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(_LOG, "api_started", version=__version__)
    try:
        yield
    finally:
        provider = app.dependency_overrides.get(get_reader_service, get_reader_service)
        await provider().shutdown()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Application with the reader router registered.
    """
    configure_logging()

    app = FastAPI(title="readaloud", version=__version__, lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
