"""
Text Segmentation for Read-Aloud Playback.

Splits extracted document text into the ordered, playable units the
controller walks through. A unit is a run of text up to and including its
sentence terminators (. ! ?) or line break; a bare run of line breaks is a
candidate of its own. Whitespace-only candidates are dropped and indices are
assigned afterwards, so the sequence is always 0-based and contiguous.

Example:
    >>> [c.text for c in segment("Hi there. How are you?\\nFine!")]
    ['Hi there.', ' How are you?\\n', 'Fine!']
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from readaloud.core.logging import get_logger, verbose
from readaloud.utils.timeit import timeit

_LOG = get_logger("readaloud.segmenter")

# Text followed by any terminators (kept attached), or a run of newlines.
_UNIT = re.compile(r"[^.!?\n]+[.!?\n]*|\n+")


@dataclass(frozen=True)
class TextChunk:
    """One playable unit of text."""
    index: int
    text: str


def segment(raw_text: str) -> List[TextChunk]:
    """
    Split raw text into indexed chunks.

    Never fails: empty or whitespace-only input yields an empty list.
    Calling it twice on the same input yields equal results.
    """
    with timeit("segment") as t:
        pieces = [m.group(0) for m in _UNIT.finditer(raw_text or "")]
        chunks = [
            TextChunk(index=i, text=piece)
            for i, piece in enumerate(p for p in pieces if p.strip())
        ]

    verbose(_LOG, "segmented", chunks=len(chunks), chars=len(raw_text or ""), seconds=round(t.seconds, 4))
    return chunks
