"""
An in-memory, TTL-bounded cache of object listing pages.

Entries are keyed by ``(prefix, max_keys)`` and carry the monotonic time they
were fetched at. The cache has no notion of profiles: whoever owns it must
clear it whenever the client the listings came from is replaced.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .storage import ObjectMetadata

log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

CacheKey = tuple[str, int]


@dataclass(frozen=True)
class ListingCacheEntry:
    key: CacheKey
    items: tuple[ObjectMetadata, ...]
    fetched_at: float


class ListingCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: dict[CacheKey, ListingCacheEntry] = {}
        self._generation = 0
        self.hits = 0
        self.misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def generation(self) -> int:
        """Bumped on every full clear; lets in-flight fetches detect invalidation."""
        return self._generation

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def peek(self, key: CacheKey) -> Optional[ListingCacheEntry]:
        return self._entries.get(key)

    def fresh(self, key: CacheKey) -> Optional[ListingCacheEntry]:
        """Like ``get`` but leaves the hit and miss counters alone."""
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.fetched_at >= self._ttl_seconds:
            return None
        return entry

    def get(self, key: CacheKey) -> Optional[ListingCacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        age = self._clock() - entry.fetched_at
        if age >= self._ttl_seconds:
            self.misses += 1
            log.debug("Listing cache entry %r expired (age %.1fs)", key, age)
            return None
        self.hits += 1
        return entry

    def put(
        self,
        key: CacheKey,
        items: list[ObjectMetadata],
        fetched_at: Optional[float] = None,
    ) -> ListingCacheEntry:
        entry = ListingCacheEntry(
            key=key,
            items=tuple(items),
            fetched_at=self._clock() if fetched_at is None else fetched_at,
        )
        self._entries[key] = entry
        return entry

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        if self._entries:
            log.debug("Clearing %d listing cache entries", len(self._entries))
        self._entries.clear()
        self._generation += 1
