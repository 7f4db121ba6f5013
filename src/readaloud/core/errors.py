"""
Error Codes and Exceptions.

Every failure the reader can surface derives from ReaderError, which carries
a machine-readable code and serializes to the JSON error body the API returns.

How each error is handled:
    - ExtractionError: fatal to opening/adding a book, surfaced, no retry
    - SynthesisError: fatal to the current playback attempt; prefetch
      failures for other chunks are dropped and retried when needed
    - PlaybackResourceError: the audio output could not play a resource;
      handled like SynthesisError
    - PersistenceError: position/library write failed; logged, never blocks
      transport
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Standardized error codes for API responses and CLI output."""
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    PLAYBACK_FAILED = "PLAYBACK_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    BOOK_NOT_FOUND = "BOOK_NOT_FOUND"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ReaderError(Exception):
    """
    Base exception for reader errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode.
        details: Optional dictionary with additional context.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ExtractionError(ReaderError):
    """The document could not be opened or its text/thumbnail extracted."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.EXTRACTION_FAILED, details)


class SynthesisError(ReaderError):
    """Empty text, missing credentials, or a failed/unusable synthesis response."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.SYNTHESIS_FAILED, details)


class PlaybackResourceError(ReaderError):
    """The audio output failed to play an attached resource."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.PLAYBACK_FAILED, details)


class PersistenceError(ReaderError):
    """Saving or loading library data failed."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.PERSISTENCE_FAILED, details)


class BookNotFoundError(ReaderError):
    def __init__(self, book_id: int):
        super().__init__(f"Book {book_id} not found.", ErrorCode.BOOK_NOT_FOUND, {"book_id": book_id})


class NoActiveSessionError(ReaderError):
    def __init__(self, message: str = "No book is open."):
        super().__init__(message, ErrorCode.NO_ACTIVE_SESSION)
