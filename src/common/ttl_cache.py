"""In-process TTL cache for mutable upstream answers (project version listings).

Per-version metadata and artifacts are immutable and live in the on-disk
content-addressed store; listings of which versions exist change upstream and
are therefore only memoized here, for a bounded time.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


@dataclass
class TTLEntry(Generic[T]):
    """A single cache entry with TTL."""

    value: T
    expires_at: float
    created_at: float = field(default_factory=time.time)

    def is_expired(self) -> bool:
        """Check if this entry has expired."""
        return time.time() > self.expires_at


class TTLCache:
    """Thread-safe TTL cache with a bounded entry count."""

    def __init__(self, default_ttl: float = 600, max_entries: int = 10000):
        """Initialize the cache.

        Args:
            default_ttl: Default time-to-live in seconds.
            max_entries: Evict oldest entries beyond this count.
        """
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._cache: Dict[Hashable, TTLEntry[Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value or None if missing/expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._cache[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        """Cache a value.

        Args:
            key: Cache key.
            value: Value to store.
            ttl: Optional TTL override in seconds.
        """
        effective_ttl = ttl if ttl is not None else self._default_ttl
        with self._lock:
            self._cache[key] = TTLEntry(value=value, expires_at=time.time() + effective_ttl)
            if len(self._cache) > self._max_entries:
                self._evict_oldest(max(1, self._max_entries // 10))

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            expired_count = sum(1 for e in self._cache.values() if e.is_expired())
            return {
                "total_entries": len(self._cache),
                "expired_entries": expired_count,
                "active_entries": len(self._cache) - expired_count,
                "max_entries": self._max_entries,
                "default_ttl": self._default_ttl,
            }

    def _evict_oldest(self, count: int) -> None:
        """Evict the oldest entries. Caller holds the lock."""
        sorted_keys = sorted(self._cache.keys(), key=lambda k: self._cache[k].created_at)
        for key in sorted_keys[:count]:
            del self._cache[key]
