"""
Playback Controller.

State machine that owns the playhead and drives chunk-by-chunk playback:

    idle/stopped --play()--> playing --pause()--> paused --play()--> playing
    playing --natural completion--> playing (next chunk) | stopped (end)
    any --next()/seek(i)--> playing
    any --stop()--> stopped
    any --teardown()--> idle (closed)

Entering playing for chunk i persists i (fire-and-forget), moves the
prefetch window to i and tops it up, fetches audio for i (cache, in-flight
join, or foreground synthesis) and attaches it to the output. Natural
completion is delivered as a future by the output; a watcher task awaits it
and calls _advance().

Cancellation:
    _session_token: cancelled by stop()/teardown(), replaced afterwards.
        Gates cache writes and background prefetch.
    _play_token: child of the session token, one per playback attempt.
        Cancelled by next()/seek() and by pause() during a fetch. Gates
        attaching audio and advancing the playhead.

Usage:
    controller = PlaybackController(chunks, scheduler, cache, output, voice="Kore")
    await controller.play()
    controller.pause()
    await controller.play()        # resumes, no re-synthesis
    await controller.next()
    controller.stop()
    await controller.teardown()
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set

from readaloud.core.config import Defaults
from readaloud.core.errors import PersistenceError, PlaybackResourceError, ReaderError
from readaloud.core.logging import get_logger, debug, fail, info, verbose, warn
from readaloud.library.store import PositionStore
from readaloud.reader.cache import AudioCache
from readaloud.reader.cancellation import CancellationToken, OperationCancelled
from readaloud.reader.output import AudioOutput
from readaloud.reader.prefetch import PrefetchScheduler
from readaloud.reader.segmenter import TextChunk

_LOG = get_logger("readaloud.controller")


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PlaybackState:
    """Snapshot of the controller, handed to observers."""
    status: PlaybackStatus
    current_index: int
    rate: float
    voice: str


class PlaybackController:
    def __init__(
        self,
        chunks: Sequence[TextChunk],
        scheduler: PrefetchScheduler,
        cache: AudioCache,
        output: AudioOutput,
        voice: str,
        rate: float = Defaults.PLAYBACK_DEFAULT_RATE,
        window_size: int = Defaults.PLAYBACK_PREFETCH_WINDOW,
        position_store: Optional[PositionStore] = None,
        book_id: Optional[int] = None,
        start_index: int = 0,
        min_rate: float = Defaults.PLAYBACK_MIN_RATE,
        max_rate: float = Defaults.PLAYBACK_MAX_RATE,
        on_change: Optional[Callable[[PlaybackState], None]] = None,
        text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS,
    ):
        self._chunks: List[TextChunk] = list(chunks)
        self._scheduler = scheduler
        self._cache = cache
        self._output = output
        self._voice = voice
        self._rate = rate
        self._window = window_size
        self._store = position_store
        self._book_id = book_id
        self._min_rate = min_rate
        self._max_rate = max_rate
        self.on_change = on_change
        self._text_preview_chars = text_preview_chars

        self._status = PlaybackStatus.IDLE
        self._index = start_index if 0 <= start_index < len(self._chunks) else 0
        self._message = ""
        self._error: Optional[ReaderError] = None
        self._attached_index: Optional[int] = None
        self._closed = False

        self._session_token = CancellationToken("session")
        self._play_token: Optional[CancellationToken] = None
        self._attempt: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # ─────────────────────────────────────────────────────────────────────────
    # Observers
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> PlaybackState:
        return PlaybackState(self._status, self._index, self._rate, self._voice)

    @property
    def status(self) -> PlaybackStatus:
        return self._status

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> List[TextChunk]:
        return list(self._chunks)

    @property
    def voice(self) -> str:
        return self._voice

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def message(self) -> str:
        return self._message

    @property
    def error(self) -> Optional[ReaderError]:
        return self._error

    @property
    def can_next(self) -> bool:
        return self._index < len(self._chunks) - 1

    @property
    def closed(self) -> bool:
        return self._closed

    # ─────────────────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────────────────

    async def play(self, index: Optional[int] = None) -> None:
        """
        Start or resume playback.

        With an index this is seek(index). A paused controller with audio
        attached resumes where it left off.
        """
        self._ensure_open()
        if index is not None:
            await self.seek(index)
            return
        if self._status == PlaybackStatus.PLAYING:
            return
        if self._status == PlaybackStatus.PAUSED and self._attached_index == self._index:
            self._output.resume()
            self._set(PlaybackStatus.PLAYING, self._reading_message())
            info(_LOG, "resumed", index=self._index)
            return
        await self._start(self._index)

    def pause(self) -> None:
        self._ensure_open()
        if self._status != PlaybackStatus.PLAYING:
            return
        if self._attached_index == self._index:
            self._output.pause()
        elif self._play_token is not None:
            # still fetching: drop this attempt, play() starts a new one
            self._play_token.cancel()
        self._set(PlaybackStatus.PAUSED, "Paused.")
        info(_LOG, "paused", index=self._index)

    async def toggle(self) -> None:
        if self._status == PlaybackStatus.PLAYING:
            self.pause()
        else:
            await self.play()

    def stop(self) -> None:
        """
        Halt playback and drop all audio for this session.

        Safe from every state and idempotent.
        """
        self._session_token.cancel()
        self._play_token = None
        self._session_token = CancellationToken("session")

        self._output.halt()
        self._attached_index = None
        cancelled = self._scheduler.cancel_all()
        released = self._cache.clear()

        changed = self._status != PlaybackStatus.STOPPED
        self._status = PlaybackStatus.STOPPED
        self._message = "Stopped."
        if changed:
            info(_LOG, "stopped", index=self._index, released=released, cancelled=cancelled)
            self._notify()

    async def next(self) -> None:
        """Skip to the following chunk. Does nothing on the last chunk."""
        self._ensure_open()
        if not self.can_next:
            debug(_LOG, "next_ignored", index=self._index)
            return
        await self._start(self._index + 1)

    async def seek(self, index: int) -> None:
        """
        Jump to a chunk and play it.

        Raises:
            ValueError: index is outside the chunk list.
        """
        self._ensure_open()
        if not 0 <= index < len(self._chunks):
            raise ValueError(f"chunk index {index} out of range 0..{len(self._chunks) - 1}")
        await self._start(index)

    async def select(self, index: int) -> bool:
        """
        Handle a click on a chunk: seek there unless audio is playing.

        Returns:
            True if playback moved to the chunk.
        """
        if self._status == PlaybackStatus.PLAYING:
            debug(_LOG, "select_ignored", index=index, playing=self._index)
            return False
        await self.seek(index)
        return True

    def set_rate(self, rate: float) -> None:
        """
        Raises:
            ValueError: rate outside [min_rate, max_rate].
        """
        rate = float(rate)
        if not self._min_rate <= rate <= self._max_rate:
            raise ValueError(f"rate must be between {self._min_rate} and {self._max_rate}, got {rate}")
        self._rate = rate
        self._output.set_rate(rate)
        verbose(_LOG, "rate_changed", rate=rate)
        self._notify()

    def set_voice(self, voice: str) -> bool:
        """
        Change the voice. Only accepted while idle or stopped.

        Audio synthesized with the old voice is discarded.
        """
        if self._status in (PlaybackStatus.PLAYING, PlaybackStatus.PAUSED):
            debug(_LOG, "voice_change_ignored", voice=voice, status=self._status.value)
            return False
        if voice == self._voice:
            return True
        self._voice = voice
        self._scheduler.cancel_all()
        self._cache.clear()
        info(_LOG, "voice_changed", voice=voice)
        self._notify()
        return True

    async def teardown(self) -> None:
        """Stop, release everything, and close the controller. Idempotent."""
        if self._closed:
            return
        self.stop()

        attempt = self._attempt
        if attempt is not None and not attempt.done() and attempt is not asyncio.current_task():
            attempt.cancel()
            await asyncio.wait({attempt})
        if self._background:
            await asyncio.wait(set(self._background))

        self._output.close()
        self._closed = True
        self._status = PlaybackStatus.IDLE
        self._message = ""
        info(_LOG, "teardown", book_id=self._book_id)
        self._notify()

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    async def _start(self, index: int) -> None:
        """Enter playing for chunk index and wait until its audio is attached."""
        if not self._chunks:
            self._message = "Nothing to read."
            self._notify()
            return

        if self._play_token is not None:
            self._play_token.cancel()
        self._output.halt()
        self._attached_index = None

        token = self._session_token.child(f"play-{index}")
        self._play_token = token
        self._index = index
        self._error = None
        self._set(PlaybackStatus.PLAYING, f"Preparing chunk {index + 1} of {len(self._chunks)}...")

        self._persist(index)
        self._scheduler.retarget(index, self._window)
        self._scheduler.ensure_window(index, self._window, self._chunks, self._voice, self._session_token)

        attempt = asyncio.create_task(self._load_and_attach(index, token), name=f"play-{index}")
        self._attempt = attempt
        await asyncio.wait({attempt})

    async def _load_and_attach(self, index: int, token: CancellationToken) -> None:
        try:
            resource = await self._scheduler.fetch(
                self._chunks[index], self._voice, self._session_token, attempt=token
            )
        except OperationCancelled:
            return
        except ReaderError as e:
            if not token.cancelled:
                self._fail(index, e)
            return

        if token.cancelled:
            debug(_LOG, "attach_skipped", index=index)
            return

        try:
            done = self._output.start(resource, self._rate)
        except PlaybackResourceError as e:
            self._fail(index, e)
            return

        self._attached_index = index
        self._set(PlaybackStatus.PLAYING, self._reading_message())
        text = self._chunks[index].text
        preview = text[:self._text_preview_chars] if self._text_preview_chars > 0 else ""
        info(_LOG, "chunk_started", index=index, total=len(self._chunks), chars=len(text), text_preview=preview)
        self._spawn(self._watch(done, index, token), name=f"watch-{index}")

    async def _watch(self, done: "asyncio.Future[None]", index: int, token: CancellationToken) -> None:
        await asyncio.wait({done})
        if done.cancelled() or token.cancelled:
            return
        exc = done.exception()
        if exc is not None:
            self._fail(index, PlaybackResourceError(f"Playback failed: {exc}"))
            return
        await self._advance(index, token)

    async def _advance(self, index: int, token: CancellationToken) -> None:
        """Natural completion of chunk index."""
        if token.cancelled or self._status != PlaybackStatus.PLAYING or self._index != index:
            return
        self._attached_index = None

        if index + 1 >= len(self._chunks):
            self.stop()
            self._index = 0
            self._message = "Finished reading."
            info(_LOG, "finished", chunks=len(self._chunks))
            self._notify()
            return

        verbose(_LOG, "advance", index=index + 1)
        await self._start(index + 1)

    def _fail(self, index: int, e: ReaderError) -> None:
        fail(_LOG, "playback_failed", index=index, error=e.code, message=e.message)
        self.stop()
        self._error = e
        self._message = f"Could not read chunk {index + 1}: {e.message}"
        self._notify()

    def _persist(self, index: int) -> None:
        if self._store is None or self._book_id is None:
            return
        self._spawn(self._save_position(self._book_id, index), name=f"persist-{index}")

    async def _save_position(self, book_id: int, index: int) -> None:
        try:
            await self._store.save_position(book_id, index)
        except PersistenceError as e:
            warn(_LOG, "position_save_failed", book_id=book_id, index=index, error=e.message)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _set(self, status: PlaybackStatus, message: str) -> None:
        self._status = status
        self._message = message
        self._notify()

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self.state)
        except Exception as e:
            warn(_LOG, "on_change_failed", error=repr(e))

    def _reading_message(self) -> str:
        return f"Reading chunk {self._index + 1} of {len(self._chunks)}..."

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("playback controller is closed")
