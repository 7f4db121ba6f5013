"""
readaloud Services Layer.

Sits between the surfaces (CLI, HTTP API) and the reader core:
    - reader_service.py: ReaderService (library + active session)
"""
from .reader_service import ReaderService, get_service, reset_service

__all__ = [
    "ReaderService",
    "get_service",
    "reset_service",
]
