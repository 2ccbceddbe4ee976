"""
TTL cache for fetched JSON resources (status lists, DID documents).

Entries are immutable once written and replaced wholesale on refetch.
Expiry is checked lazily on read; nothing is evicted proactively.
"""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from vc_trust.config import DEFAULT_CACHE_TTL


@dataclass(frozen=True)
class CacheEntry:
    """A cached document and the time it was fetched."""

    data: Any
    fetched_at: float


class ResourceCache:
    """URL -> JSON document cache with a fixed TTL.

    Concurrent writers race as last-write-wins. The lock only guards the
    dictionary; it is never held while a fetch is running.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Entry lifetime in seconds.
            clock: Monotonic time source, injectable for tests.
        """
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Any | None:
        """Return a copy of the cached document, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(url)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= self.ttl:
            return None
        return copy.deepcopy(entry.data)

    def set(self, url: str, data: Any) -> None:
        """Store a document, replacing any previous entry for the URL."""
        entry = CacheEntry(data=copy.deepcopy(data), fetched_at=self._clock())
        with self._lock:
            self._entries[url] = entry

    def get_or_fetch(self, url: str, fetch: Callable[[], Any]) -> Any:
        """Return the cached document or call ``fetch`` and cache its result.

        Exceptions from ``fetch`` propagate and nothing is cached.
        """
        cached = self.get(url)
        if cached is not None:
            return cached
        data = fetch()
        self.set(url, data)
        return data

    def invalidate(self, url: str) -> None:
        """Drop the entry for a URL."""
        with self._lock:
            self._entries.pop(url, None)

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and self.get(url) is not None
