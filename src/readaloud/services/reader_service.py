"""
ReaderService - Library plus the Active Reading Session.

Single entry point shared by the CLI and the HTTP API:

    Library:  add_book / list_books / get_book / delete_book / thumbnail
    Session:  open_book -> ReaderSession (one at a time) -> close_session
    Status:   snapshot() for the current book, chunk and transport state

Only one book is open at a time. Opening another book, deleting the open
book, or shutting down closes the current session first, which stops
playback and releases every cached resource.

Example:
    >>> service = ReaderService(default_settings())
    >>> book = service.add_book("moby-dick.pdf")
    >>> session = await service.open_book(book.id)
    >>> await session.controller.play()
    >>> await service.shutdown()
"""
from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from readaloud.core.config import Settings
from readaloud.core.errors import NoActiveSessionError
from readaloud.core.logging import get_logger, info
from readaloud.library.store import Book, BookLibrary, LibraryPositionStore
from readaloud.reader.output import AudioOutput, create_output
from readaloud.reader.session import ReaderSession
from readaloud.reader.synthesis import HttpSpeechSynthesizer, Synthesizer

_LOG = get_logger("readaloud.service")


class ReaderService:
    """
    Orchestrates the book library and the one active reader session.

    Args:
        settings: Raw settings; validated into a ReaderConfig here.
        synthesizer: Speech backend. Defaults to HttpSpeechSynthesizer
            built from the synthesis section.
        output_factory: Builds a fresh AudioOutput per session. Defaults to
            the playback.output backend.
    """

    def __init__(
        self,
        settings: Settings,
        synthesizer: Optional[Synthesizer] = None,
        output_factory: Optional[Callable[[], AudioOutput]] = None,
    ):
        self.settings = settings
        self.config = settings.get_reader_config()
        lib_cfg = self.config.library
        self.library = BookLibrary(lib_cfg.base_dir, lib_cfg.thumbnail_scale, lib_cfg.thumbnail_quality)
        self.positions = LibraryPositionStore(self.library)

        self._synth = synthesizer
        self._owns_synth = synthesizer is None
        self._output_factory = output_factory or (lambda: create_output(self.config.playback.output))
        self._session: Optional[ReaderSession] = None
        self._lock: Optional[asyncio.Lock] = None

    # ─────────────────────────────────────────────────────────────────────────
    # Library
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def voices(self) -> List[str]:
        return list(self.config.synthesis.voices)

    def add_book(self, pdf_path: Union[str, Path], name: Optional[str] = None) -> Book:
        return self.library.add_book(pdf_path, name=name)

    def list_books(self) -> List[Book]:
        return self.library.list_books()

    def get_book(self, book_id: int) -> Book:
        return self.library.get_book(book_id)

    def thumbnail(self, book_id: int) -> Optional[bytes]:
        return self.library.read_thumbnail(book_id)

    async def delete_book(self, book_id: int) -> Book:
        """Delete a book, closing it first if it is the open one."""
        if self._session is not None and self._session.book.id == book_id:
            await self.close_session()
        return self.library.delete_book(book_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Session
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def session(self) -> Optional[ReaderSession]:
        return self._session

    def require_session(self) -> ReaderSession:
        """
        Raises:
            NoActiveSessionError: No book is open.
        """
        if self._session is None:
            raise NoActiveSessionError()
        return self._session

    def _get_synthesizer(self) -> Synthesizer:
        if self._synth is None:
            self._synth = HttpSpeechSynthesizer.from_config(self.config.synthesis)
        return self._synth

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def check_voice(self, voice: str) -> str:
        """
        Raises:
            ValueError: voice is not one of the configured voices.
        """
        if voice not in self.config.synthesis.voices:
            raise ValueError(f"unknown voice {voice!r}; choose from {', '.join(self.config.synthesis.voices)}")
        return voice

    def check_rate(self, rate: float) -> float:
        pb = self.config.playback
        if not pb.min_rate <= rate <= pb.max_rate:
            raise ValueError(f"rate must be between {pb.min_rate} and {pb.max_rate}, got {rate}")
        return rate

    async def open_book(
        self,
        book_id: int,
        voice: Optional[str] = None,
        rate: Optional[float] = None,
    ) -> ReaderSession:
        """
        Open a book for reading, closing any open one.

        Raises:
            BookNotFoundError: Unknown book id.
            ExtractionError: The stored PDF could not be read.
            ValueError: Unknown voice or out-of-range rate.
        """
        if voice is not None:
            self.check_voice(voice)
        if rate is not None:
            self.check_rate(rate)

        async with self._get_lock():
            book = self.library.get_book(book_id)
            await self._close_locked()
            session = await ReaderSession.open(
                book,
                self.config,
                self._get_synthesizer(),
                self._output_factory(),
                position_store=self.positions,
                voice=voice,
                rate=rate,
            )
            self._session = session
        return session

    async def close_session(self) -> bool:
        """Close the open book. Returns False if none was open."""
        async with self._get_lock():
            return await self._close_locked()

    async def _close_locked(self) -> bool:
        session, self._session = self._session, None
        if session is None:
            return False
        await session.close()
        return True

    async def shutdown(self) -> None:
        await self.close_session()
        if self._owns_synth and isinstance(self._synth, HttpSpeechSynthesizer):
            await self._synth.aclose()
        info(_LOG, "shutdown")

    # ─────────────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """Current transport state as a plain dict."""
        session = self.require_session()
        c = session.controller
        return {
            "book_id": session.book.id,
            "book_name": session.book.name,
            "status": c.status.value,
            "current_index": c.current_index,
            "chunk_count": c.chunk_count,
            "rate": c.rate,
            "voice": c.voice,
            "message": c.message,
            "error": c.error.to_dict() if c.error is not None else None,
            "can_next": c.can_next,
            "cached": session.cache.indices(),
            "pending": sorted(session.scheduler.pending),
        }


# =============================================================================
# Global Service Instance
# =============================================================================

_service: Optional[ReaderService] = None
_service_lock = threading.Lock()


def get_service(settings: Settings) -> ReaderService:
    """Get or create the global ReaderService instance."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = ReaderService(settings)
    return _service


def reset_service() -> None:
    """Drop the global instance (tests)."""
    global _service
    with _service_lock:
        _service = None
