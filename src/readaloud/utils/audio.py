"""
Audio Conversion Utilities.

Synthesis endpoints hand back raw 16-bit little-endian mono PCM (24 kHz for
OpenAI-style "pcm" responses) or a complete WAV file. Playback works from
WAV files on disk. This module converts between the three shapes:

    pcm16_to_wav_file:  raw PCM bytes -> WAV file on disk (PCM_16)
    wav_bytes_to_pcm16: WAV container bytes -> raw PCM bytes + sample rate
    read_wav_float32:   WAV file -> float32 mono samples for an output stream

Dependencies:
    - numpy: sample buffers
    - soundfile: WAV reading/writing (libsndfile)
"""
from __future__ import annotations

import io
from pathlib import Path
from typing import Tuple

import numpy as np
import soundfile as sf

from readaloud.core.logging import get_logger, debug
from readaloud.utils.timeit import timeit

_LOG = get_logger("readaloud.audio")

PCM16_SAMPLE_WIDTH = 2


def is_wav(data: bytes) -> bool:
    """True if the bytes start with a RIFF/WAVE header."""
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def pcm16_to_samples(pcm: bytes) -> np.ndarray:
    """
    Interpret raw bytes as little-endian int16 mono samples.

    A trailing odd byte (half a sample) is dropped.
    """
    usable = len(pcm) - (len(pcm) % PCM16_SAMPLE_WIDTH)
    return np.frombuffer(pcm[:usable], dtype="<i2")


def pcm16_to_wav_file(pcm: bytes, sample_rate: int, path: Path) -> int:
    """
    Write raw PCM16 mono audio to a WAV file.

    Args:
        pcm: Raw little-endian 16-bit samples.
        sample_rate: Samples per second (24000 for OpenAI "pcm").
        path: Destination file.

    Returns:
        Number of frames written.
    """
    samples = pcm16_to_samples(pcm)
    with timeit("wav_write") as t:
        sf.write(str(path), samples, sample_rate, format="WAV", subtype="PCM_16")
    debug(_LOG, "wav_written", frames=len(samples), sr=sample_rate, seconds=round(t.seconds, 4))
    return int(len(samples))


def wav_bytes_to_pcm16(wav_bytes: bytes) -> Tuple[bytes, int]:
    """
    Decode a WAV container into raw PCM16 mono bytes.

    Stereo input is averaged down to mono.

    Returns:
        Tuple of (pcm_bytes, sample_rate).
    """
    data, sr = sf.read(io.BytesIO(wav_bytes), dtype="int16")
    if data.ndim > 1:
        data = data.mean(axis=1).astype(np.int16)
    return np.asarray(data, dtype="<i2").tobytes(), int(sr)


def read_wav_float32(path: Path) -> Tuple[np.ndarray, int]:
    """Read a WAV file as float32 mono samples in [-1, 1]."""
    data, sr = sf.read(str(path), dtype="float32")
    if data.ndim > 1:
        data = data.mean(axis=1)
    return np.asarray(data, dtype=np.float32), int(sr)
