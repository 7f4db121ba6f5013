"""
Command-Line Interface for readaloud.

Manage the book library, read a book aloud from the terminal, inspect how
a PDF will be chunked, or start the local control API.

Usage Examples:
    # Add a PDF to the library
    readaloud --add ~/books/moby-dick.pdf

    # List books with their saved positions
    readaloud --list

    # Read book 1 aloud from its saved position
    readaloud --read 1

    # Start at chunk 40 with another voice, slightly faster
    readaloud --read 1 --from 40 --voice Puck --rate 1.25

    # Synthesize through the book without a sound device
    readaloud --read 1 --no-audio

    # Show how a PDF is segmented (no synthesis)
    readaloud --chunks paper.pdf --json

    # Serve the HTTP control API
    readaloud --serve --port 8765

Environment Variables:
    READALOUD_SETTINGS: settings file (default config/settings.yaml)
    READALOUD_API_KEY: speech service API key
    READALOUD_SYNTH_URL: speech service base URL
    READALOUD_LIBRARY_DIR: library directory
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from typing import List, Optional

from readaloud.core.config import ConfigValidationError, Settings, default_settings, load_settings
from readaloud.core.errors import ReaderError
from readaloud.core.logging import configure_logging, get_logger, info
from readaloud.library.extraction import extract_pdf
from readaloud.reader.controller import PlaybackState, PlaybackStatus
from readaloud.reader.output import VirtualOutput
from readaloud.reader.segmenter import segment
from readaloud.services.reader_service import ReaderService

DEFAULT_SETTINGS_PATH = "config/settings.yaml"


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="readaloud CLI (PDF read-aloud)")

    # Library
    parser.add_argument("--add", metavar="PDF", help="Add a PDF to the library")
    parser.add_argument("--name", help="Display name for --add")
    parser.add_argument("--list", action="store_true", help="List books in the library")
    parser.add_argument("--remove", metavar="ID", type=int, help="Remove a book from the library")

    # Reading
    parser.add_argument("--read", metavar="ID", type=int, help="Read a book aloud")
    parser.add_argument("--from", dest="from_index", metavar="N", type=int,
                        help="Chunk index to start from (default: saved position)")
    parser.add_argument("--voice", help="Voice override")
    parser.add_argument("--rate", type=float, help="Playback rate (e.g. 1.25)")
    parser.add_argument("--no-audio", action="store_true",
                        help="Synthesize without playing (no sound device needed)")

    # Inspection
    parser.add_argument("--chunks", metavar="PDF", help="Show how a PDF is segmented")
    parser.add_argument("--json", action="store_true", help="Print JSON output")

    # Server
    parser.add_argument("--serve", action="store_true", help="Run the HTTP control API")
    parser.add_argument("--host", help="API host override")
    parser.add_argument("--port", type=int, help="API port override")

    parser.add_argument("--config", help="Settings file (default: config/settings.yaml)")

    return parser.parse_args(argv)


def _load_settings(path: Optional[str]) -> Settings:
    """An explicit --config must exist; the default path is optional."""
    if path:
        return load_settings(path)
    try:
        return load_settings(os.getenv("READALOUD_SETTINGS", DEFAULT_SETTINGS_PATH))
    except FileNotFoundError:
        return default_settings()


def _print(payload: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)


def _list_books(service: ReaderService, as_json: bool) -> int:
    books = service.list_books()
    if as_json:
        print(json.dumps({"ok": True, "books": [b.to_dict() for b in books]}, ensure_ascii=False))
        return 0
    if not books:
        print("Library is empty. Add a book with --add PDF.")
        return 0
    for b in books:
        print(f"{b.id:>4}  {b.name}  (chunk {b.last_position + 1})")
    return 0


def _show_chunks(pdf: str, as_json: bool) -> int:
    doc = extract_pdf(pdf)
    chunks = segment(doc.text)
    if as_json:
        print(json.dumps({
            "ok": True,
            "pages": doc.page_count,
            "chunks": [{"index": c.index, "text": c.text} for c in chunks],
        }, ensure_ascii=False))
    else:
        for c in chunks:
            print(f"{c.index:>5}  {c.text.strip()}")
        print(f"{len(chunks)} chunks from {doc.page_count} pages")
    print("CHUNKS_OK")
    return 0


async def _read_book(service: ReaderService, args: argparse.Namespace) -> int:
    log = get_logger("readaloud.cli")
    finished = asyncio.Event()

    try:
        session = await service.open_book(args.read, voice=args.voice, rate=args.rate)
        controller = session.controller
        if controller.chunk_count == 0:
            print("This book has no readable text.")
            return 1
        last = {"index": -1}

        def on_change(state: PlaybackState) -> None:
            if state.status == PlaybackStatus.PLAYING and state.current_index != last["index"]:
                last["index"] = state.current_index
                text = session.chunks[state.current_index].text.strip()
                print(f"[{state.current_index + 1}/{controller.chunk_count}] {text}")
            elif state.status in (PlaybackStatus.STOPPED, PlaybackStatus.IDLE):
                finished.set()

        controller.on_change = on_change
        info(log, "reading", book_id=session.book.id, chunks=controller.chunk_count, voice=controller.voice)

        if args.from_index is not None:
            await controller.seek(args.from_index)
        else:
            await controller.play()
        await finished.wait()

        error = controller.error
        print(controller.message)
        return 1 if error is not None else 0
    finally:
        await service.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = _parse_args(argv)

    configure_logging()
    if args.config:
        os.environ["READALOUD_SETTINGS"] = args.config

    try:
        if args.chunks:
            return _show_chunks(args.chunks, args.json)

        settings = _load_settings(args.config)

        if args.serve:
            import uvicorn

            api = settings.get_reader_config().api
            uvicorn.run(
                "readaloud.main:app",
                host=args.host or api.host,
                port=args.port or api.port,
            )
            return 0

        output_factory = (lambda: VirtualOutput(time_scale=0.0)) if args.no_audio else None
        service = ReaderService(settings, output_factory=output_factory)

        if args.add:
            book = service.add_book(args.add, name=args.name)
            _print({"ok": True, "book": book.to_dict()}, args.json)
            return 0

        if args.list:
            return _list_books(service, args.json)

        if args.remove is not None:
            book = asyncio.run(service.delete_book(args.remove))
            _print({"ok": True, "removed": book.id}, args.json)
            return 0

        if args.read is not None:
            return asyncio.run(_read_book(service, args))

    except ReaderError as e:
        print(f"[FAILED] {e.message}")
        if args.json:
            print(json.dumps(e.to_dict(), ensure_ascii=False))
        return 1
    except (ValueError, ConfigValidationError) as e:
        print(f"[FAILED] {e}")
        return 2

    print("Nothing to do. See --help.")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
