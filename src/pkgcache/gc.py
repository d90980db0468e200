"""Garbage-collection policy for the package cache."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Protocol

from .keys import CacheKey

SECONDS_PER_DAY = 86400


class PinsCacheKeys(Protocol):
    """Anything that can name the cache entries it depends on (e.g. a lock record)."""

    def cache_keys(self) -> Iterable[CacheKey]:
        ...


@dataclass(frozen=True)
class GCPolicy:
    """Entries older than ``retention_seconds`` and not pinned are collectable."""
    retention_seconds: float
    pinned: FrozenSet[CacheKey] = field(default_factory=frozenset)
    now: Optional[float] = None

    @classmethod
    def from_records(cls, records: Iterable[PinsCacheKeys], retention_days: float,
                     now: Optional[float] = None) -> "GCPolicy":
        pinned = set()
        for record in records:
            pinned.update(record.cache_keys())
        return cls(retention_days * SECONDS_PER_DAY, frozenset(pinned), now)

    @property
    def cutoff(self) -> float:
        return (self.now if self.now is not None else time.time()) - self.retention_seconds

    def collectable(self, key: CacheKey, last_access: float) -> bool:
        return key not in self.pinned and last_access < self.cutoff
