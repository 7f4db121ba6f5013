"""
API Request/Response Schemas.

Pydantic models for the local control API.

Models:
    AddBookRequest: register a PDF already on this machine
    OpenRequest: open a book for reading
    IndexRequest: play/seek/select target chunk
    VoiceRequest / RateRequest: reader settings
    BookInfo / ChunkInfo / ReaderState: responses

Example Request (POST /v1/reader/open):
    {
        "book_id": 3,
        "voice": "Kore",
        "rate": 1.25
    }
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from readaloud.library.store import Book


class AddBookRequest(BaseModel):
    path: str = Field(..., min_length=1, description="Path of a PDF on the server machine")
    name: Optional[str] = Field(None, description="Display name (defaults to the file name)")


class OpenRequest(BaseModel):
    book_id: int = Field(..., ge=1)
    voice: Optional[str] = Field(None, description="Voice id; server default if omitted")
    rate: Optional[float] = Field(None, gt=0, description="Playback rate multiplier")


class IndexRequest(BaseModel):
    index: int = Field(..., ge=0, description="0-based chunk index")


class PlayRequest(BaseModel):
    index: Optional[int] = Field(None, ge=0, description="Chunk to jump to; resume if omitted")


class VoiceRequest(BaseModel):
    voice: str = Field(..., min_length=1)


class RateRequest(BaseModel):
    rate: float = Field(..., gt=0)


class BookInfo(BaseModel):
    id: int
    name: str
    last_position: int
    has_thumbnail: bool
    added_at: float

    @classmethod
    def from_book(cls, book: Book) -> "BookInfo":
        return cls(
            id=book.id,
            name=book.name,
            last_position=book.last_position,
            has_thumbnail=bool(book.thumbnail),
            added_at=book.added_at,
        )


class ChunkInfo(BaseModel):
    index: int
    text: str


class ReaderState(BaseModel):
    """Transport state of the open book."""
    book_id: int
    book_name: str
    status: str
    current_index: int
    chunk_count: int
    rate: float
    voice: str
    message: str
    error: Optional[Dict[str, Any]] = None
    can_next: bool
    cached: List[int] = Field(default_factory=list)
    pending: List[int] = Field(default_factory=list)
