"""
Shared fakes and fixtures.

    FakeSynthesizer: in-process Synthesizer with optional gating/failures,
        records every call and the peak concurrency per text
    FakeOutput: AudioOutput whose completion is driven by finish()
    FakePositionStore: records saved positions
    make_reader: builds chunks + cache + scheduler + controller
    make_pdf: writes a real PDF with PyMuPDF
"""
from __future__ import annotations

import asyncio
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from readaloud.core.errors import PersistenceError, PlaybackResourceError, SynthesisError
from readaloud.reader.cache import AudioCache
from readaloud.reader.controller import PlaybackController
from readaloud.reader.prefetch import PrefetchScheduler
from readaloud.reader.resource import AudioResource
from readaloud.reader.segmenter import TextChunk
from readaloud.reader.synthesis import PcmAudio


class FakeSynthesizer:
    def __init__(
        self,
        fail_on: Iterable[str] = (),
        blocked: bool = False,
        samples: int = 2400,
        block_on: Iterable[str] = (),
    ):
        self.fail_on = set(fail_on)
        self.blocked = blocked
        self.block_on = set(block_on)
        self.samples = samples
        self.calls: List[Tuple[str, str]] = []
        self.active = 0
        self.peak = 0
        self._active_by_text: Counter = Counter()
        self.peak_same_text = 0
        self._gate: Optional[asyncio.Event] = None

    def release(self) -> None:
        self.blocked = False
        self.block_on.clear()
        if self._gate is not None:
            self._gate.set()

    def count(self, text: str) -> int:
        return sum(1 for t, _ in self.calls if t == text)

    async def synthesize(self, text: str, voice: str) -> PcmAudio:
        self.calls.append((text, voice))
        self.active += 1
        self.peak = max(self.peak, self.active)
        self._active_by_text[text] += 1
        self.peak_same_text = max(self.peak_same_text, self._active_by_text[text])
        try:
            if self.blocked or text in self.block_on:
                if self._gate is None:
                    self._gate = asyncio.Event()
                await self._gate.wait()
            else:
                await asyncio.sleep(0)
            if text in self.fail_on:
                raise SynthesisError(f"cannot synthesize {text!r}")
            return PcmAudio(data=b"\x00\x01" * self.samples, sample_rate=24000)
        finally:
            self.active -= 1
            self._active_by_text[text] -= 1


class FakeOutput:
    def __init__(self):
        self.started: List[AudioResource] = []
        self.attached: Optional[AudioResource] = None
        self.paused = False
        self.rate: Optional[float] = None
        self.closed = False
        self._future: Optional[asyncio.Future] = None

    def start(self, resource: AudioResource, rate: float) -> asyncio.Future:
        self.halt()
        if resource.released:
            raise PlaybackResourceError("released")
        self._future = asyncio.get_running_loop().create_future()
        self.attached = resource
        self.rate = rate
        self.paused = False
        self.started.append(resource)
        return self._future

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def halt(self) -> None:
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._future = None
        self.attached = None
        self.paused = False

    def close(self) -> None:
        self.halt()
        self.closed = True

    def finish(self) -> None:
        """Simulate the attached resource playing to its end."""
        future = self._future
        self._future = None
        self.attached = None
        assert future is not None, "nothing is playing"
        future.set_result(None)


class FakePositionStore:
    def __init__(self, saved: int = 0, fail: bool = False):
        self.saved: Dict[int, int] = {}
        self.history: List[int] = []
        self.initial = saved
        self.fail = fail

    async def save_position(self, book_id: int, index: int) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise PersistenceError("disk full")
        self.saved[book_id] = index
        self.history.append(index)

    async def load_position(self, book_id: int) -> int:
        return self.saved.get(book_id, self.initial)


def chunk_text(i: int) -> str:
    return f"Chunk {i}."


def make_chunks(n: int) -> List[TextChunk]:
    return [TextChunk(index=i, text=chunk_text(i)) for i in range(n)]


async def settle(rounds: int = 25) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def make_reader():
    """
    Factory for a wired controller.

    Returns (controller, cache, scheduler, synthesizer, output).
    """
    def _make(
        n: int = 5,
        window: int = 3,
        synth: Optional[FakeSynthesizer] = None,
        output: Optional[FakeOutput] = None,
        store: Optional[FakePositionStore] = None,
        **kwargs,
    ):
        synth = synth or FakeSynthesizer()
        output = output or FakeOutput()
        cache = AudioCache()
        scheduler = PrefetchScheduler(synth, cache)
        controller = PlaybackController(
            make_chunks(n),
            scheduler,
            cache,
            output,
            voice="Kore",
            window_size=window,
            position_store=store,
            book_id=1 if store is not None else None,
            **kwargs,
        )
        return controller, cache, scheduler, synth, output

    return _make


@pytest.fixture
def make_pdf(tmp_path):
    """Write a PDF whose pages hold the given texts; returns its path."""
    import fitz

    def _make(pages: List[str], name: str = "book.pdf"):
        path = tmp_path / name
        doc = fitz.open()
        for text in pages:
            page = doc.new_page()
            page.insert_text((72, 72), text)
        doc.save(str(path))
        doc.close()
        return path

    return _make


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "READALOUD_SYNTH_URL",
        "READALOUD_API_KEY",
        "READALOUD_LIBRARY_DIR",
        "READALOUD_OUTPUT",
        "READALOUD_SETTINGS",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    from readaloud.api.dependencies import get_settings
    from readaloud.services.reader_service import reset_service

    get_settings.cache_clear()
    reset_service()
