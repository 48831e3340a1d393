"""
Query result cache.

A small TTL cache for finished answers so repeated identical questions over
the same record set do not trigger another completion call. One instance is
created per application (see ``api_server.lifespan``) and passed to the
pipeline; the clock is injectable so tests control expiry.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

from call_insights.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
CacheKey = tuple[str, int, str]


def make_cache_key(question: str, record_count: int, scope: str = "") -> CacheKey:
    """Key on the normalized question text, record-set size and filter scope."""
    return (" ".join(question.lower().split()), record_count, scope)


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


class QueryCache(Generic[T]):
    """
    Insertion-ordered TTL cache.

    Expired entries are swept whenever the cache is read or written. When
    full, the oldest insertion is evicted; this is not LRU.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, _Entry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[T]:
        self._sweep()
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: Hashable, value: T) -> None:
        self._sweep()
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("query_cache_evicted")
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("query_cache_swept", expired=len(expired))
