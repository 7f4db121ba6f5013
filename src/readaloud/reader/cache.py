"""
Per-Session Audio Cache.

Maps chunk index to the AudioResource synthesized for it and owns the
lifetime of every resource it holds:
    - put() over an occupied index releases the previous resource first
    - clear() releases everything and may be called any number of times

One cache exists per reader session; nothing here is process-global. The
controller and the prefetch scheduler share it and touch it only through
get/put/clear, never by mutating stored resources.

Example:
    >>> cache = AudioCache()
    >>> cache.put(0, resource)
    >>> cache.get(0) is resource
    True
    >>> cache.clear()
    1
"""
from __future__ import annotations

import threading
from typing import Dict, List, Optional

from readaloud.core.logging import get_logger, info, verbose
from readaloud.reader.resource import AudioResource

_LOG = get_logger("readaloud.cache")


class AudioCache:
    """
    Owning map of chunk index -> AudioResource.

    Thread Safety:
        Operations hold a single lock; resource release happens outside it.

    Statistics:
        hits, misses, puts and releases are tracked for stats().
    """

    def __init__(self) -> None:
        self._d: Dict[int, AudioResource] = {}
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._puts = 0
        self._releases = 0

    def get(self, index: int) -> Optional[AudioResource]:
        """Look up the resource for a chunk. No side effects beyond counters."""
        with self._lock:
            resource = self._d.get(index)
            if resource is None:
                self._misses += 1
            else:
                self._hits += 1
        return resource

    def has(self, index: int) -> bool:
        with self._lock:
            return index in self._d

    def put(self, index: int, resource: AudioResource) -> None:
        """
        Store a resource, releasing any different resource already at index.
        """
        with self._lock:
            previous = self._d.get(index)
            self._d[index] = resource
            self._puts += 1

        if previous is not None and previous is not resource:
            previous.release()
            with self._lock:
                self._releases += 1
            verbose(_LOG, "replaced", index=index)

        verbose(_LOG, "stored", index=index, size=len(self))

    def clear(self) -> int:
        """
        Release every stored resource and empty the map.

        Returns:
            Number of resources released by this call.
        """
        with self._lock:
            resources = list(self._d.values())
            self._d.clear()

        for resource in resources:
            resource.release()

        with self._lock:
            self._releases += len(resources)

        if resources:
            info(_LOG, "cleared", released=len(resources))
        return len(resources)

    def indices(self) -> List[int]:
        with self._lock:
            return sorted(self._d)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "puts": self._puts,
                "releases": self._releases,
                "size": len(self._d),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)

    def __contains__(self, index: int) -> bool:
        return self.has(index)
