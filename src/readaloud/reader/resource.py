"""
Playable audio resources.

An AudioResource is a WAV file in a private temp directory. It is the
revocable handle the cache owns: release() deletes the file, and a released
resource can no longer be attached to an output. Releasing twice is a logged
no-op, so a resource is freed exactly once no matter how many owners race
to clean it up.
"""
from __future__ import annotations

import shutil
import tempfile
import threading
from pathlib import Path

from readaloud.core.logging import get_logger, debug, warn
from readaloud.utils.audio import pcm16_to_wav_file

_LOG = get_logger("readaloud.resource")


class AudioResource:
    """
    Handle to one chunk's synthesized audio.

    Attributes:
        path: WAV file location (valid until release()).
        sample_rate: Samples per second.
        frames: Number of mono samples.
    """

    def __init__(self, path: Path, sample_rate: int, frames: int, label: str = ""):
        self.path = Path(path)
        self.sample_rate = int(sample_rate)
        self.frames = int(frames)
        self.label = label
        self._released = False
        self._lock = threading.Lock()

    @classmethod
    def from_pcm16(cls, pcm: bytes, sample_rate: int, label: str = "") -> "AudioResource":
        """Write raw PCM16 mono audio to a fresh temp WAV and wrap it."""
        tmp_dir = Path(tempfile.mkdtemp(prefix="readaloud_"))
        path = tmp_dir / "chunk.wav"
        try:
            frames = pcm16_to_wav_file(pcm, sample_rate, path)
        except Exception:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise
        return cls(path, sample_rate, frames, label=label)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def duration_s(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0

    def release(self) -> bool:
        """
        Delete the backing file.

        Returns:
            True if this call released the resource, False if it was
            already released.
        """
        with self._lock:
            if self._released:
                warn(_LOG, "double_release", resource=self.label)
                return False
            self._released = True

        shutil.rmtree(self.path.parent, ignore_errors=True)
        debug(_LOG, "released", resource=self.label)
        return True

    def __repr__(self) -> str:
        state = "released" if self._released else f"{self.duration_s:.2f}s"
        return f"AudioResource({self.label or self.path.name}, {state})"
