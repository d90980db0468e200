"""Content-addressed package cache.

- keys.py: deterministic key derivation for metadata, artifacts and direct references
- store.py: the on-disk store (atomic writes, per-key writer locks, gc)
- gc.py: retention policy and pinning by in-use lock records
"""

from .gc import GCPolicy
from .keys import CacheKey
from .store import CacheEntry, PackageCache

__all__ = ["CacheEntry", "CacheKey", "GCPolicy", "PackageCache"]
