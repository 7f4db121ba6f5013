"""
Timing helper.

    with timeit("segment") as t:
        chunks = segment(text)
    print(t.timing.seconds)

Uses perf_counter for sub-millisecond resolution.
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """Context manager that records wall-clock time of its block in `.timing`."""

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=perf_counter() - self._t0, meta=self.meta)

    @property
    def seconds(self) -> float:
        """Elapsed seconds, or -1.0 while the block is still running."""
        return self.timing.seconds if self.timing else -1.0
