"""
Audio Outputs.

An AudioOutput plays one attached resource at a time. start() halts any
previous stream before attaching the new resource and returns an
asyncio.Future that resolves when the resource plays to its natural end.
halt() cancels that future, so a watcher awaiting it can tell a natural
completion from an interruption.

Backends:
    - SoundDeviceOutput: speakers via sounddevice (PortAudio)
    - VirtualOutput: headless, completion driven by the event loop clock

Outputs only reference resources; the audio cache owns and releases them.

Usage:
    output = create_output("virtual", time_scale=0.01)
    done = output.start(resource, rate=1.0)
    output.pause(); output.resume()
    await done
"""
from __future__ import annotations

import asyncio
import threading
from typing import Any, Optional, Protocol, runtime_checkable

import numpy as np

from readaloud.core.errors import PlaybackResourceError
from readaloud.core.logging import get_logger, debug, verbose, warn
from readaloud.reader.resource import AudioResource
from readaloud.utils.audio import read_wav_float32

_LOG = get_logger("readaloud.output")


@runtime_checkable
class AudioOutput(Protocol):
    @property
    def attached(self) -> Optional[AudioResource]:
        ...

    def start(self, resource: AudioResource, rate: float) -> "asyncio.Future[None]":
        ...

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def set_rate(self, rate: float) -> None:
        ...

    def halt(self) -> None:
        ...

    def close(self) -> None:
        ...


def _check_playable(resource: AudioResource) -> None:
    if resource.released:
        raise PlaybackResourceError(
            "Audio for this chunk is no longer available.",
            details={"resource": resource.label},
        )


# =============================================================================
# Virtual output
# =============================================================================

class VirtualOutput:
    """
    Output that plays nothing and finishes after the resource's duration.

    Position advances at `rate` audio seconds per wall second, scaled by
    time_scale (0.01 plays a 2 s chunk in 20 ms at rate 1.0).
    """

    def __init__(self, time_scale: float = 1.0):
        self.time_scale = time_scale
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._resource: Optional[AudioResource] = None
        self._future: Optional[asyncio.Future] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._rate = 1.0
        self._remaining_s = 0.0
        self._segment_started = 0.0
        self._paused = False

    @property
    def attached(self) -> Optional[AudioResource]:
        return self._resource

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def remaining_s(self) -> float:
        """Audio seconds left in the attached resource."""
        if self._resource is None:
            return 0.0
        if self._paused or self._handle is None:
            return self._remaining_s
        return max(0.0, self._remaining_s - self._elapsed_audio_s())

    def start(self, resource: AudioResource, rate: float) -> "asyncio.Future[None]":
        self.halt()
        _check_playable(resource)

        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()
        self._resource = resource
        self._rate = rate
        self._remaining_s = resource.duration_s
        self._paused = False
        self._schedule()
        debug(_LOG, "virtual_start", resource=resource.label, duration=round(resource.duration_s, 3))
        return self._future

    def pause(self) -> None:
        if self._resource is None or self._paused:
            return
        self._consume()
        self._paused = True

    def resume(self) -> None:
        if self._resource is None or not self._paused:
            return
        self._paused = False
        self._schedule()

    def set_rate(self, rate: float) -> None:
        if self._resource is not None and not self._paused:
            self._consume()
            self._rate = rate
            self._schedule()
        else:
            self._rate = rate

    def halt(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._future = None
        self._resource = None
        self._paused = False

    def close(self) -> None:
        self.halt()

    def _elapsed_audio_s(self) -> float:
        wall = self._loop.time() - self._segment_started
        return wall * self._rate / self.time_scale if self.time_scale > 0 else self._remaining_s

    def _consume(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._remaining_s = max(0.0, self._remaining_s - self._elapsed_audio_s())

    def _schedule(self) -> None:
        self._segment_started = self._loop.time()
        delay = self._remaining_s * self.time_scale / self._rate
        self._handle = self._loop.call_later(delay, self._finish)

    def _finish(self) -> None:
        future = self._future
        self._handle = None
        self._future = None
        self._resource = None
        if future is not None and not future.done():
            future.set_result(None)


# =============================================================================
# sounddevice output
# =============================================================================

class _StreamState:
    """Playback position shared between the event loop and the audio thread."""

    def __init__(self, samples: np.ndarray, rate: float):
        self.samples = samples
        self.grid = np.arange(len(samples), dtype=np.float64)
        self.position = 0.0
        self.rate = rate
        self.paused = False
        self.lock = threading.Lock()


def _import_sounddevice() -> Any:
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise PlaybackResourceError(
            f"Audio output unavailable: {e}",
            details={"hint": "pip install sounddevice, or set playback.output: virtual"},
        ) from e
    return sd


class SoundDeviceOutput:
    """
    Plays resources on the default (or given) output device.

    Rate changes resample on the fly by stepping the read position by
    `rate` samples per output frame and interpolating, so they take effect
    within one audio block.
    """

    def __init__(self, device: Optional[int | str] = None, blocksize: int = 1024):
        self._sd = _import_sounddevice()
        self.device = device
        self.blocksize = blocksize
        self._stream = None
        self._state: Optional[_StreamState] = None
        self._resource: Optional[AudioResource] = None
        self._future: Optional[asyncio.Future] = None

    @property
    def attached(self) -> Optional[AudioResource]:
        return self._resource

    def start(self, resource: AudioResource, rate: float) -> "asyncio.Future[None]":
        self.halt()
        _check_playable(resource)

        try:
            samples, sample_rate = read_wav_float32(resource.path)
        except (OSError, RuntimeError) as e:
            raise PlaybackResourceError(f"Could not read audio: {e}", details={"resource": resource.label}) from e

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        state = _StreamState(samples, rate)

        def on_finished() -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_complete, future)

        try:
            stream = self._sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
                blocksize=self.blocksize,
                callback=self._make_callback(state),
                finished_callback=on_finished,
            )
            stream.start()
        except self._sd.PortAudioError as e:
            raise PlaybackResourceError(f"Audio device error: {e}", details={"resource": resource.label}) from e

        self._stream = stream
        self._state = state
        self._resource = resource
        self._future = future
        verbose(_LOG, "stream_started", resource=resource.label, sr=sample_rate, rate=rate)
        return future

    def pause(self) -> None:
        if self._state is not None:
            with self._state.lock:
                self._state.paused = True

    def resume(self) -> None:
        if self._state is not None:
            with self._state.lock:
                self._state.paused = False

    def set_rate(self, rate: float) -> None:
        if self._state is not None:
            with self._state.lock:
                self._state.rate = rate

    def halt(self) -> None:
        future, stream = self._future, self._stream
        self._future = None
        self._stream = None
        self._state = None
        self._resource = None

        if future is not None and not future.done():
            future.cancel()
        if stream is not None:
            try:
                stream.abort()
                stream.close()
            except self._sd.PortAudioError as e:
                warn(_LOG, "stream_close_failed", error=str(e))

    def close(self) -> None:
        self.halt()

    def _make_callback(self, state: _StreamState):
        sd = self._sd

        def callback(outdata, frames, time, status) -> None:
            with state.lock:
                paused, rate, position = state.paused, state.rate, state.position
            if paused:
                outdata.fill(0)
                return

            n = len(state.samples)
            if n == 0 or position >= n:
                outdata.fill(0)
                raise sd.CallbackStop

            steps = position + np.arange(frames, dtype=np.float64) * rate
            outdata[:, 0] = np.interp(steps, state.grid, state.samples, right=0.0)

            with state.lock:
                state.position = position + frames * rate
                done = state.position >= n
            if done:
                raise sd.CallbackStop

        return callback


def _complete(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


def create_output(backend: str, **kwargs: Any) -> AudioOutput:
    """
    Build the configured output backend.

    Raises:
        PlaybackResourceError: sounddevice requested but unavailable.
        ValueError: Unknown backend name.
    """
    backend = backend.strip().lower()
    if backend == "virtual":
        return VirtualOutput(**kwargs)
    if backend == "sounddevice":
        return SoundDeviceOutput(**kwargs)
    raise ValueError(f"unknown audio output backend: {backend!r}")
