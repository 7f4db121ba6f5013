"""
Reader Control API Routes.

Local HTTP surface over ReaderService, for driving the reader from a
browser UI or scripts.

Endpoints:
    GET    /health                      - liveness plus open-book summary
    GET    /v1/voices                   - configured voices
    GET    /v1/books                    - library listing
    POST   /v1/books                    - add a PDF by path
    GET    /v1/books/{id}               - one book
    DELETE /v1/books/{id}               - remove a book (closes it if open)
    GET    /v1/books/{id}/thumbnail     - first-page JPEG
    POST   /v1/reader/open              - open a book
    POST   /v1/reader/{play,pause,stop,next,seek,select,voice,rate,close}
    GET    /v1/reader/state             - transport state
    GET    /v1/reader/chunks            - segmented text of the open book

Error Handling:
    Errors are JSON bodies from ReaderError.to_dict():
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>"
    }

    HTTP status codes:
        - BOOK_NOT_FOUND -> 404
        - NO_ACTIVE_SESSION -> 409
        - EXTRACTION_FAILED, INVALID_INPUT -> 422
        - SYNTHESIS_FAILED, PLAYBACK_FAILED -> 502
        - PERSISTENCE_FAILED -> 500

Example:
    curl -X POST http://127.0.0.1:8765/v1/reader/open -d '{"book_id": 1}' \\
        -H "Content-Type: application/json"
    curl -X POST http://127.0.0.1:8765/v1/reader/play
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from readaloud import __version__
from readaloud.api.dependencies import get_reader_service
from readaloud.api.schemas import (
    AddBookRequest,
    BookInfo,
    ChunkInfo,
    IndexRequest,
    OpenRequest,
    PlayRequest,
    RateRequest,
    ReaderState,
    VoiceRequest,
)
from readaloud.core.errors import ErrorCode, ReaderError
from readaloud.core.logging import get_logger, fail
from readaloud.services.reader_service import ReaderService

router = APIRouter()

_LOG = get_logger("readaloud.api")

_STATUS = {
    ErrorCode.BOOK_NOT_FOUND: 404,
    ErrorCode.NO_ACTIVE_SESSION: 409,
    ErrorCode.EXTRACTION_FAILED: 422,
    ErrorCode.INVALID_INPUT: 422,
    ErrorCode.SYNTHESIS_FAILED: 502,
    ErrorCode.PLAYBACK_FAILED: 502,
    ErrorCode.PERSISTENCE_FAILED: 500,
}


def _error_response(error: ReaderError) -> JSONResponse:
    return JSONResponse(status_code=_STATUS.get(error.code, 500), content=error.to_dict())


def _invalid(message: str, status_code: int = 422) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ReaderError(message, ErrorCode.INVALID_INPUT).to_dict(),
    )


def _state(service: ReaderService) -> ReaderState:
    return ReaderState(**service.snapshot())


# ─────────────────────────────────────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/health")
def health(service: ReaderService = Depends(get_reader_service)):
    session = service.session
    return {
        "ok": True,
        "version": __version__,
        "output": service.config.playback.output,
        "book_id": session.book.id if session else None,
        "status": session.controller.status.value if session else None,
    }


@router.get("/v1/voices")
def voices(service: ReaderService = Depends(get_reader_service)):
    return {"voices": service.voices, "default": service.config.synthesis.default_voice}


# ─────────────────────────────────────────────────────────────────────────────
# Library
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/v1/books", response_model=List[BookInfo])
def list_books(service: ReaderService = Depends(get_reader_service)):
    try:
        return [BookInfo.from_book(b) for b in service.list_books()]
    except ReaderError as e:
        return _error_response(e)


@router.post("/v1/books", response_model=BookInfo, status_code=201)
def add_book(req: AddBookRequest, service: ReaderService = Depends(get_reader_service)):
    try:
        return BookInfo.from_book(service.add_book(req.path, name=req.name))
    except ReaderError as e:
        fail(_LOG, "add_book_failed", path=req.path, error=e.code)
        return _error_response(e)


@router.get("/v1/books/{book_id}", response_model=BookInfo)
def get_book(book_id: int, service: ReaderService = Depends(get_reader_service)):
    try:
        return BookInfo.from_book(service.get_book(book_id))
    except ReaderError as e:
        return _error_response(e)


@router.delete("/v1/books/{book_id}")
async def delete_book(book_id: int, service: ReaderService = Depends(get_reader_service)):
    try:
        book = await service.delete_book(book_id)
    except ReaderError as e:
        return _error_response(e)
    return {"ok": True, "id": book.id}


@router.get("/v1/books/{book_id}/thumbnail")
def thumbnail(book_id: int, service: ReaderService = Depends(get_reader_service)):
    try:
        data = service.thumbnail(book_id)
    except ReaderError as e:
        return _error_response(e)
    if data is None:
        return JSONResponse(status_code=404, content={"ok": False, "error": "NO_THUMBNAIL", "message": "No thumbnail."})
    return Response(content=data, media_type="image/jpeg")


# ─────────────────────────────────────────────────────────────────────────────
# Reader
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/v1/reader/open", response_model=ReaderState)
async def open_book(req: OpenRequest, service: ReaderService = Depends(get_reader_service)):
    try:
        await service.open_book(req.book_id, voice=req.voice, rate=req.rate)
        return _state(service)
    except ReaderError as e:
        return _error_response(e)
    except ValueError as e:
        return _invalid(str(e))


@router.post("/v1/reader/play", response_model=ReaderState)
async def play(req: Optional[PlayRequest] = None, service: ReaderService = Depends(get_reader_service)):
    try:
        session = service.require_session()
        await session.controller.play(req.index if req else None)
        return _state(service)
    except ReaderError as e:
        return _error_response(e)
    except ValueError as e:
        return _invalid(str(e))


@router.post("/v1/reader/pause", response_model=ReaderState)
async def pause(service: ReaderService = Depends(get_reader_service)):
    try:
        service.require_session().controller.pause()
        return _state(service)
    except ReaderError as e:
        return _error_response(e)


@router.post("/v1/reader/stop", response_model=ReaderState)
async def stop(service: ReaderService = Depends(get_reader_service)):
    try:
        service.require_session().controller.stop()
        return _state(service)
    except ReaderError as e:
        return _error_response(e)


@router.post("/v1/reader/next", response_model=ReaderState)
async def next_chunk(service: ReaderService = Depends(get_reader_service)):
    try:
        await service.require_session().controller.next()
        return _state(service)
    except ReaderError as e:
        return _error_response(e)


@router.post("/v1/reader/seek", response_model=ReaderState)
async def seek(req: IndexRequest, service: ReaderService = Depends(get_reader_service)):
    try:
        await service.require_session().controller.seek(req.index)
        return _state(service)
    except ReaderError as e:
        return _error_response(e)
    except ValueError as e:
        return _invalid(str(e))


@router.post("/v1/reader/select")
async def select(req: IndexRequest, service: ReaderService = Depends(get_reader_service)):
    try:
        moved = await service.require_session().controller.select(req.index)
        return {"moved": moved, "state": _state(service).model_dump()}
    except ReaderError as e:
        return _error_response(e)
    except ValueError as e:
        return _invalid(str(e))


@router.post("/v1/reader/voice", response_model=ReaderState)
async def set_voice(req: VoiceRequest, service: ReaderService = Depends(get_reader_service)):
    try:
        session = service.require_session()
        service.check_voice(req.voice)
        if not session.controller.set_voice(req.voice):
            return _invalid("Stop playback before changing the voice.", status_code=409)
        return _state(service)
    except ReaderError as e:
        return _error_response(e)
    except ValueError as e:
        return _invalid(str(e))


@router.post("/v1/reader/rate", response_model=ReaderState)
async def set_rate(req: RateRequest, service: ReaderService = Depends(get_reader_service)):
    try:
        service.require_session().controller.set_rate(req.rate)
        return _state(service)
    except ReaderError as e:
        return _error_response(e)
    except ValueError as e:
        return _invalid(str(e))


@router.post("/v1/reader/close")
async def close(service: ReaderService = Depends(get_reader_service)):
    closed = await service.close_session()
    return {"ok": True, "closed": closed}


@router.get("/v1/reader/state", response_model=ReaderState)
async def state(service: ReaderService = Depends(get_reader_service)):
    try:
        return _state(service)
    except ReaderError as e:
        return _error_response(e)


@router.get("/v1/reader/chunks", response_model=List[ChunkInfo])
async def chunks(service: ReaderService = Depends(get_reader_service)):
    try:
        session = service.require_session()
    except ReaderError as e:
        return _error_response(e)
    return [ChunkInfo(index=c.index, text=c.text) for c in session.chunks]
