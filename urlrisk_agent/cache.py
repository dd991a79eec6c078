"""
Per-source result caches.

Each signal source owns exactly one cache instance; keys are never shared
across sources. ``MemoryCache`` is an in-process LRU with per-entry TTL.
Anything implementing ``CacheBackend`` (for example a Redis-backed store)
can be dropped in instead.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Protocol


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    def has(self, key: str) -> bool: ...

    def invalidate(self, key: str) -> bool: ...

    def clear(self) -> None: ...


class MemoryCache:
    """Bounded LRU cache with TTL expiry.

    ``get`` returns None on a miss (absent or expired), so None itself is
    not a cacheable value. Writes to an existing key replace it outright.
    """

    def __init__(self, capacity: int, default_ttl: float, clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be > 0")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            self.stats.expirations += 1
            return None
        return entry

    def get(self, key: str) -> Any | None:
        entry = self._live(key)
        if entry is None:
            self.stats.misses += 1
            return None
        self._entries.move_to_end(key)
        self.stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if value is None:
            raise ValueError("None cannot be cached")
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + (ttl or self.default_ttl))
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self.stats.evictions += 1

    def has(self, key: str) -> bool:
        return self._live(key) is not None

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()


class NoOpCache:
    """Cache that never stores anything; used when caching is disabled for a source."""

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        return None

    def has(self, key: str) -> bool:
        return False

    def invalidate(self, key: str) -> bool:
        return False

    def clear(self) -> None:
        return None
