"""
Reader Session.

One ReaderSession per open book. Opening a session extracts the book's
text, segments it, restores the saved position and wires together the
per-session cache, prefetch scheduler and playback controller. close()
tears all of it down; nothing outlives the session.

Usage:
    session = await ReaderSession.open(book, config, synthesizer, output, store)
    await session.controller.play()
    ...
    await session.close()
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Callable, List, Optional

from readaloud.core.config import ReaderConfig
from readaloud.core.errors import PersistenceError
from readaloud.core.logging import get_logger, info, set_session_id, warn
from readaloud.library.extraction import extract_pdf
from readaloud.library.store import Book, PositionStore
from readaloud.reader.cache import AudioCache
from readaloud.reader.controller import PlaybackController, PlaybackState
from readaloud.reader.output import AudioOutput
from readaloud.reader.prefetch import PrefetchScheduler
from readaloud.reader.segmenter import TextChunk, segment
from readaloud.reader.synthesis import Synthesizer
from readaloud.utils.timeit import timeit

_LOG = get_logger("readaloud.session")


def restore_index(saved: int, chunk_count: int) -> int:
    """A saved position past the end (e.g. the text changed) restarts at 0."""
    if 0 <= saved < chunk_count:
        return saved
    return 0


class ReaderSession:
    def __init__(
        self,
        book: Book,
        chunks: List[TextChunk],
        controller: PlaybackController,
        cache: AudioCache,
        scheduler: PrefetchScheduler,
        session_id: str,
    ):
        self.book = book
        self.chunks = chunks
        self.controller = controller
        self.cache = cache
        self.scheduler = scheduler
        self.session_id = session_id
        self._closed = False

    @classmethod
    async def open(
        cls,
        book: Book,
        config: ReaderConfig,
        synthesizer: Synthesizer,
        output: AudioOutput,
        position_store: Optional[PositionStore] = None,
        voice: Optional[str] = None,
        rate: Optional[float] = None,
        on_change: Optional[Callable[[PlaybackState], None]] = None,
    ) -> "ReaderSession":
        """
        Open a book for reading.

        Raises:
            ExtractionError: The book's PDF could not be read.
        """
        session_id = uuid.uuid4().hex[:12]
        set_session_id(session_id)

        with timeit("open_book") as t:
            doc = await asyncio.to_thread(
                extract_pdf, book.file,
                config.library.thumbnail_scale, config.library.thumbnail_quality,
            )
            chunks = segment(doc.text)

        saved = book.last_position
        if position_store is not None:
            try:
                saved = await position_store.load_position(book.id)
            except PersistenceError as e:
                warn(_LOG, "position_load_failed", book_id=book.id, error=e.message)
        start = restore_index(saved, len(chunks))

        cache = AudioCache()
        scheduler = PrefetchScheduler(synthesizer, cache)
        controller = PlaybackController(
            chunks,
            scheduler,
            cache,
            output,
            voice=voice or config.synthesis.default_voice,
            rate=config.playback.default_rate,
            window_size=config.playback.prefetch_window,
            position_store=position_store,
            book_id=book.id,
            start_index=start,
            min_rate=config.playback.min_rate,
            max_rate=config.playback.max_rate,
            on_change=on_change,
            text_preview_chars=config.logging.text_preview_chars,
        )
        if rate is not None:
            controller.set_rate(rate)

        info(
            _LOG, "session_opened",
            book_id=book.id, name=book.name, chunks=len(chunks), start=start,
            seconds=round(t.seconds, 3),
        )
        return cls(book, chunks, controller, cache, scheduler, session_id)

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        await self.controller.teardown()
        self._closed = True
        info(_LOG, "session_closed", book_id=self.book.id, cache=self.cache.stats())
        set_session_id("-")
