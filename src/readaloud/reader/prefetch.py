"""
Prefetch Scheduler.

Keeps audio for the chunks just ahead of the playhead synthesized before
they are needed, so the gap between two chunks is only the time it takes to
attach an already cached resource.

Rules:
    - ensure_window() launches background synthesis for up to window_size
      chunks after the playhead that are neither cached nor pending
    - at most window_size scheduler tasks are in flight at once
    - retarget() drops background work outside the new window after a
      seek, and hands the task for the new playhead to the foreground
    - an index is never synthesized twice concurrently: foreground fetches
      join an in-flight task for the same index instead of starting another
    - results are stored in the cache only while the caller's token is live
    - background failures are logged and dropped; the chunk is retried in
      the foreground when the playhead reaches it

Usage:
    scheduler = PrefetchScheduler(synthesizer, cache)
    scheduler.retarget(playhead, 3)
    scheduler.ensure_window(playhead, 3, chunks, "Kore", token)
    resource = await scheduler.fetch(chunks[playhead], "Kore", token)
    ...
    scheduler.cancel_all()
"""
from __future__ import annotations

import asyncio
from typing import Dict, FrozenSet, List, Optional, Sequence

from readaloud.core.errors import ReaderError
from readaloud.core.logging import get_logger, debug, fail, verbose, warn
from readaloud.reader.cache import AudioCache
from readaloud.reader.cancellation import CancellationToken, OperationCancelled
from readaloud.reader.resource import AudioResource
from readaloud.reader.segmenter import TextChunk
from readaloud.reader.synthesis import Synthesizer, pcm_to_resource, synthesize_text

_LOG = get_logger("readaloud.prefetch")


class PrefetchScheduler:
    """
    Bounded lookahead synthesis with per-index de-duplication.

    Two kinds of work are tracked:
        _tasks: background tasks launched by ensure_window (capped)
        _foreground: tasks started by fetch() on a cache miss
    """

    def __init__(self, synthesizer: Synthesizer, cache: AudioCache):
        self._synth = synthesizer
        self._cache = cache
        self._tasks: Dict[int, asyncio.Task] = {}
        self._foreground: Dict[int, asyncio.Task] = {}
        self._peak_in_flight = 0

    @property
    def pending(self) -> FrozenSet[int]:
        """Indices currently being synthesized (background or foreground)."""
        return frozenset(self._tasks) | frozenset(self._foreground)

    @property
    def in_flight(self) -> int:
        """Number of background tasks launched by ensure_window still running."""
        return len(self._tasks)

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    def ensure_window(
        self,
        playhead: int,
        window_size: int,
        chunks: Sequence[TextChunk],
        voice: str,
        token: CancellationToken,
    ) -> List[int]:
        """
        Launch background synthesis for the chunks after the playhead.

        Never blocks. Must be called from a running event loop.

        Returns:
            Indices for which a task was launched by this call.
        """
        if token.cancelled:
            return []

        launched: List[int] = []
        pending = self.pending
        for offset in range(1, window_size + 1):
            index = playhead + offset
            if index < 0:
                continue
            if index >= len(chunks):
                break
            if index in pending or self._cache.has(index):
                continue
            if len(self._tasks) >= window_size:
                break

            task = asyncio.create_task(
                self._prefetch(chunks[index], voice, token),
                name=f"prefetch-{index}",
            )
            self._tasks[index] = task
            task.add_done_callback(lambda t, i=index: self._forget(self._tasks, i, t))
            launched.append(index)

        self._peak_in_flight = max(self._peak_in_flight, len(self._tasks))
        if launched:
            verbose(_LOG, "prefetch_scheduled", playhead=playhead, indices=launched, in_flight=len(self._tasks))
        return launched

    def retarget(self, playhead: int, window_size: int) -> List[int]:
        """
        Point the background work at a new playhead.

        Tasks for indices behind the playhead or beyond the window are
        cancelled. A task already running for the playhead itself moves to
        the foreground registry, where fetch() joins it, so it no longer
        holds a window slot.

        Returns:
            Indices whose tasks were cancelled.
        """
        dropped: List[int] = []
        for index, task in list(self._tasks.items()):
            if index == playhead:
                del self._tasks[index]
                if index not in self._foreground:
                    self._foreground[index] = task
                    task.add_done_callback(lambda t, i=index: self._forget(self._foreground, i, t))
            elif index < playhead or index > playhead + window_size:
                del self._tasks[index]
                task.cancel()
                dropped.append(index)
        if dropped:
            verbose(_LOG, "prefetch_retargeted", playhead=playhead, dropped=sorted(dropped))
        return sorted(dropped)

    async def fetch(
        self,
        chunk: TextChunk,
        voice: str,
        token: CancellationToken,
        attempt: Optional[CancellationToken] = None,
    ) -> AudioResource:
        """
        Get audio for a chunk now.

        A cache hit returns immediately. If the chunk is already being
        synthesized, the in-flight task is awaited and its cached result
        used. Otherwise the chunk is synthesized here.

        Args:
            token: Gates whether the result may be cached.
            attempt: Optional token of the caller; once cancelled, a joined
                task that produced nothing is not retried.

        Raises:
            SynthesisError: Synthesis failed for this chunk.
            OperationCancelled: A token was cancelled before a result was ready.
        """
        index = chunk.index
        cached = self._cache.get(index)
        if cached is not None:
            debug(_LOG, "fetch_hit", index=index)
            return cached

        token.raise_if_cancelled()
        running = self._tasks.get(index) or self._foreground.get(index)
        if running is not None:
            verbose(_LOG, "fetch_join", index=index)
            await asyncio.wait({running})
            token.raise_if_cancelled()
            cached = self._cache.get(index)
            if cached is not None:
                return cached
            if attempt is not None:
                attempt.raise_if_cancelled()

        task = self._foreground.get(index)
        if task is None or task.done():
            task = asyncio.create_task(self._synthesize(chunk, voice, token), name=f"fetch-{index}")
            self._foreground[index] = task
            task.add_done_callback(lambda t, i=index: self._forget(self._foreground, i, t))

        # Shielded so that a superseded caller does not throw away the audio.
        return await asyncio.shield(task)

    def cancel_all(self) -> int:
        """Cancel every in-flight task and clear the pending set."""
        tasks = list(self._tasks.values()) + list(self._foreground.values())
        self._tasks.clear()
        self._foreground.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            verbose(_LOG, "prefetch_cancelled", count=len(tasks))
        return len(tasks)

    async def _synthesize(self, chunk: TextChunk, voice: str, token: CancellationToken) -> AudioResource:
        audio = await synthesize_text(self._synth, chunk.text, voice)
        token.raise_if_cancelled()
        resource = pcm_to_resource(audio, label=f"chunk-{chunk.index}")
        self._cache.put(chunk.index, resource)
        return resource

    async def _prefetch(self, chunk: TextChunk, voice: str, token: CancellationToken) -> None:
        try:
            await self._synthesize(chunk, voice, token)
        except OperationCancelled:
            debug(_LOG, "prefetch_discarded", index=chunk.index)
        except ReaderError as e:
            warn(_LOG, "prefetch_failed", index=chunk.index, error=e.code, message=e.message)
        except Exception as e:
            fail(_LOG, "prefetch_crashed", index=chunk.index, error=repr(e))
        else:
            verbose(_LOG, "prefetched", index=chunk.index)

    @staticmethod
    def _forget(registry: Dict[int, asyncio.Task], index: int, task: asyncio.Task) -> None:
        if registry.get(index) is task:
            del registry[index]
        if not task.cancelled():
            # mark the exception retrieved; the awaiting caller re-raises it
            task.exception()
