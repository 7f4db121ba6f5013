"""
Book Library and Position Store.

The library lives in one directory:

    {base_dir}/
        books.json          index of Book records
        files/<id>.pdf      private copy of each added PDF
        thumbs/<id>.jpg     first-page thumbnail

books.json is rewritten atomically (temp file + replace) so a crash
mid-write never leaves a corrupt index.

LibraryPositionStore adapts the library to the async position interface
the playback controller uses. Position writes are best-effort: failures
raise PersistenceError, which the controller logs and ignores.

Usage:
    library = BookLibrary("./library")
    book = library.add_book("moby-dick.pdf")
    library.update_position(book.id, 12)
    store = LibraryPositionStore(library)
    await store.load_position(book.id)    # 12
"""
from __future__ import annotations

import asyncio
import json
import shutil
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from readaloud.core.config import Defaults
from readaloud.core.errors import BookNotFoundError, PersistenceError
from readaloud.core.logging import get_logger, debug, info, success, warn
from readaloud.library.extraction import extract_pdf

_LOG = get_logger("readaloud.library")

INDEX_FILE = "books.json"


@dataclass
class Book:
    """
    A book in the library.

    Attributes:
        id: Library-assigned identifier (never reused).
        name: Display name (file stem unless given).
        file: Path of the library's copy of the PDF.
        last_position: Chunk index to resume from.
        thumbnail: Path of the first-page JPEG, or "" if none.
        added_at: Unix timestamp.
    """
    id: int
    name: str
    file: str
    last_position: int = 0
    thumbnail: str = ""
    added_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Book":
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            file=str(data.get("file", "")),
            last_position=int(data.get("last_position", 0)),
            thumbnail=str(data.get("thumbnail", "")),
            added_at=float(data.get("added_at", 0.0)),
        )


class PositionStore(Protocol):
    async def save_position(self, book_id: int, index: int) -> None:
        ...

    async def load_position(self, book_id: int) -> int:
        ...


class BookLibrary:
    """
    Durable, thread-safe book index.

    All index reads/writes hold one lock, so the API server's worker
    threads and the position writer never interleave.
    """

    def __init__(
        self,
        base_dir: Union[str, Path] = Defaults.LIBRARY_BASE_DIR,
        thumbnail_scale: float = Defaults.LIBRARY_THUMBNAIL_SCALE,
        thumbnail_quality: int = Defaults.LIBRARY_THUMBNAIL_QUALITY,
    ):
        self.base_dir = Path(base_dir)
        self.thumbnail_scale = thumbnail_scale
        self.thumbnail_quality = thumbnail_quality
        self._lock = threading.Lock()

    @property
    def index_path(self) -> Path:
        return self.base_dir / INDEX_FILE

    # ─────────────────────────────────────────────────────────────────────────
    # Index IO
    # ─────────────────────────────────────────────────────────────────────────

    def _read_index(self) -> Dict[str, Any]:
        if not self.index_path.exists():
            return {"next_id": 1, "books": []}
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read library index: {e}", details={"path": str(self.index_path)}) from e
        data.setdefault("next_id", 1)
        data.setdefault("books", [])
        return data

    def _write_index(self, data: Dict[str, Any]) -> None:
        tmp = self.index_path.with_suffix(".tmp")
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self.index_path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Could not write library index: {e}", details={"path": str(self.index_path)}) from e

    # ─────────────────────────────────────────────────────────────────────────
    # Books
    # ─────────────────────────────────────────────────────────────────────────

    def list_books(self) -> List[Book]:
        with self._lock:
            return [Book.from_dict(b) for b in self._read_index()["books"]]

    def get_book(self, book_id: int) -> Book:
        """
        Raises:
            BookNotFoundError: No book with that id.
        """
        with self._lock:
            for raw in self._read_index()["books"]:
                if int(raw["id"]) == book_id:
                    return Book.from_dict(raw)
        raise BookNotFoundError(book_id)

    def add_book(self, pdf_path: Union[str, Path], name: Optional[str] = None) -> Book:
        """
        Copy a PDF into the library and index it.

        The PDF is extracted first, so unreadable files are rejected before
        anything is written.

        Raises:
            ExtractionError: The PDF could not be read.
            PersistenceError: The library could not be written.
        """
        pdf_path = Path(pdf_path)
        doc = extract_pdf(pdf_path, self.thumbnail_scale, self.thumbnail_quality)

        with self._lock:
            data = self._read_index()
            book_id = int(data["next_id"])

            files_dir = self.base_dir / "files"
            thumbs_dir = self.base_dir / "thumbs"
            dest = files_dir / f"{book_id}.pdf"
            thumb = thumbs_dir / f"{book_id}.jpg"
            try:
                files_dir.mkdir(parents=True, exist_ok=True)
                thumbs_dir.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(pdf_path, dest)
                thumb.write_bytes(doc.thumbnail)
            except OSError as e:
                dest.unlink(missing_ok=True)
                thumb.unlink(missing_ok=True)
                raise PersistenceError(f"Could not store book: {e}", details={"file": str(pdf_path)}) from e

            book = Book(
                id=book_id,
                name=name or pdf_path.stem,
                file=str(dest),
                last_position=0,
                thumbnail=str(thumb),
                added_at=time.time(),
            )
            data["books"].append(book.to_dict())
            data["next_id"] = book_id + 1
            self._write_index(data)

        success(_LOG, "book_added", book_id=book.id, name=book.name, pages=doc.page_count)
        return book

    def delete_book(self, book_id: int) -> Book:
        """
        Remove a book and its files.

        Raises:
            BookNotFoundError: No book with that id.
        """
        with self._lock:
            data = self._read_index()
            kept, removed = [], None
            for raw in data["books"]:
                if int(raw["id"]) == book_id and removed is None:
                    removed = Book.from_dict(raw)
                else:
                    kept.append(raw)
            if removed is None:
                raise BookNotFoundError(book_id)
            data["books"] = kept
            self._write_index(data)

        for path in (removed.file, removed.thumbnail):
            if path:
                try:
                    Path(path).unlink(missing_ok=True)
                except OSError as e:
                    warn(_LOG, "book_file_cleanup_failed", book_id=book_id, path=path, error=str(e))

        info(_LOG, "book_deleted", book_id=book_id, name=removed.name)
        return removed

    def update_position(self, book_id: int, index: int) -> bool:
        """
        Store the resume position for a book.

        Returns:
            False if the book no longer exists (deleted while being read).
        """
        with self._lock:
            data = self._read_index()
            for raw in data["books"]:
                if int(raw["id"]) == book_id:
                    raw["last_position"] = int(index)
                    self._write_index(data)
                    debug(_LOG, "position_saved", book_id=book_id, index=index)
                    return True
        warn(_LOG, "position_for_unknown_book", book_id=book_id, index=index)
        return False

    def read_thumbnail(self, book_id: int) -> Optional[bytes]:
        book = self.get_book(book_id)
        if not book.thumbnail:
            return None
        path = Path(book.thumbnail)
        return path.read_bytes() if path.is_file() else None


class LibraryPositionStore:
    """
    Async position store backed by a BookLibrary.

    IO errors and malformed index entries surface as PersistenceError.
    """

    def __init__(self, library: BookLibrary):
        self.library = library

    async def save_position(self, book_id: int, index: int) -> None:
        try:
            await asyncio.to_thread(self.library.update_position, book_id, index)
        except (OSError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not save position: {e}", details={"book_id": book_id}) from e

    async def load_position(self, book_id: int) -> int:
        try:
            book = await asyncio.to_thread(self.library.get_book, book_id)
        except (OSError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not load position: {e}", details={"book_id": book_id}) from e
        return book.last_position
