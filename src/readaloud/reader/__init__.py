"""
Read-Aloud Playback Core.

    - segmenter.py: text -> ordered TextChunks
    - resource.py: playable WAV handle, released exactly once
    - cache.py: per-session index -> resource map
    - cancellation.py: cancellation tokens
    - synthesis.py: Synthesizer protocol and HTTP client
    - prefetch.py: bounded lookahead synthesis
    - output.py: sounddevice and virtual audio outputs
    - controller.py: playback state machine
    - session.py: one open book, wired together
"""
from .controller import PlaybackController, PlaybackState, PlaybackStatus
from .segmenter import TextChunk, segment

__all__ = [
    "PlaybackController",
    "PlaybackState",
    "PlaybackStatus",
    "TextChunk",
    "segment",
]
