"""
readaloud: Chunked PDF Read-Aloud Engine.

Turns a PDF into continuous spoken playback: the text is split into
sentence-sized chunks, audio for the chunks ahead of the playhead is
synthesized and cached before it is needed, and a playback controller
plays chunks strictly in order while the reader pauses, skips or seeks.
The reading position is saved per book, and stopping or closing a book
releases every cached resource and cancels all in-flight synthesis.

Key Features:
    - Bounded prefetch window with per-chunk de-duplication
    - Explicit cancellation tokens for stop/next/seek/teardown
    - OpenAI-compatible speech endpoint client (httpx)
    - Book library with thumbnails and saved positions
    - CLI (readaloud) and a local FastAPI control API

Example Usage:
    >>> from readaloud.core.config import default_settings
    >>> from readaloud.services.reader_service import ReaderService
    >>>
    >>> service = ReaderService(default_settings())
    >>> book = service.add_book("moby-dick.pdf")
    >>> session = await service.open_book(book.id)
    >>> await session.controller.play()
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
