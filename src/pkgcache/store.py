"""Content-addressed package cache shared across projects and processes.

Layout under the cache root::

    v1/<kind>/<aa>/<digest>   entry payload (immutable once written)
    v1/locks/<kind>-<digest>.lock  per-key advisory writer lock, removed by gc
    v1/tmp/                   in-flight writes, renamed into place

Readers never lock: an entry path either does not exist or holds the full
payload, because writes land via ``os.replace`` of a fully-written temp file.
Writers of the same key serialize on that key's lock; writers of different
keys never contend.
"""
from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from filelock import FileLock, Timeout

from common.errors import CacheIntegrityViolation, CacheLockTimeout
from common.logging_utils import extra_context, is_debug_enabled
from .gc import GCPolicy
from .keys import KINDS, CacheKey

logger = logging.getLogger(__name__)

LAYOUT_VERSION = "v1"
_STALE_TMP_SEC = 3600


@dataclass(frozen=True)
class CacheEntry:
    """A stored entry as seen on disk."""
    key: CacheKey
    path: str
    size: int
    last_access: float


class PackageCache:
    """Handle on one on-disk cache root.

    Construct one per process (or per test) and pass it explicitly to the
    metadata provider and the installer; there is no module-level instance.
    """

    def __init__(self, root: str, lock_timeout: float = 60.0):
        self.root = os.path.abspath(os.path.expanduser(root))
        self._base = os.path.join(self.root, LAYOUT_VERSION)
        self._lock_dir = os.path.join(self._base, "locks")
        self._tmp_dir = os.path.join(self._base, "tmp")
        self._lock_timeout = lock_timeout
        os.makedirs(self._lock_dir, exist_ok=True)
        os.makedirs(self._tmp_dir, exist_ok=True)

    def path_for(self, key: CacheKey) -> str:
        return os.path.join(self._base, key.kind, key.digest[:2], key.digest)

    def _lock_path(self, key: CacheKey) -> str:
        return os.path.join(self._lock_dir, f"{key.kind}-{key.digest}.lock")

    @staticmethod
    def _read(path: str) -> Optional[bytes]:
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def contains(self, key: CacheKey) -> bool:
        return os.path.isfile(self.path_for(key))

    def get(self, key: CacheKey) -> Optional[bytes]:
        """Return the payload for ``key`` or None on a miss."""
        path = self.path_for(key)
        data = self._read(path)
        if data is None:
            if is_debug_enabled(logger):
                logger.debug("Cache miss", extra=extra_context(
                    event="cache_miss", component="pkgcache", action="get", target=str(key)))
            return None
        try:
            # mtime stays as the write time; atime tracks last access for gc
            st = os.stat(path)
            os.utime(path, (time.time(), st.st_mtime))
        except OSError as exc:
            logger.debug("Could not record access time for %s: %s", key, exc)
        if is_debug_enabled(logger):
            logger.debug("Cache hit", extra=extra_context(
                event="cache_hit", component="pkgcache", action="get", target=str(key), size=len(data)))
        return data

    def _check_same(self, key: CacheKey, existing: bytes, data: bytes) -> None:
        if existing == data:
            return
        old = hashlib.sha256(existing).hexdigest()
        new = hashlib.sha256(data).hexdigest()
        logger.error("Cache integrity violation for %s: stored sha256 %s, offered %s", key, old, new)
        raise CacheIntegrityViolation(str(key), f"stored sha256:{old} differs from offered sha256:{new}")

    def put(self, key: CacheKey, data: bytes) -> bool:
        """Store ``data`` under ``key``.

        Returns True when this call wrote the entry, False when an identical
        entry already existed.

        Raises:
            CacheIntegrityViolation: If the key already holds different bytes.
            CacheLockTimeout: If another writer holds the key lock too long.
        """
        data = bytes(data)
        path = self.path_for(key)
        existing = self._read(path)
        if existing is not None:
            self._check_same(key, existing, data)
            return False

        os.makedirs(os.path.dirname(path), exist_ok=True)
        lock = FileLock(self._lock_path(key), timeout=self._lock_timeout)
        try:
            with lock:
                existing = self._read(path)
                if existing is not None:
                    self._check_same(key, existing, data)
                    return False
                self._write_atomic(path, data)
        except Timeout as exc:
            raise CacheLockTimeout(str(key), self._lock_timeout) from exc

        if is_debug_enabled(logger):
            logger.debug("Cache insert", extra=extra_context(
                event="cache_put", component="pkgcache", action="put", target=str(key), size=len(data)))
        return True

    def _write_atomic(self, path: str, data: bytes) -> None:
        fd, tmp = tempfile.mkstemp(dir=self._tmp_dir, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise

    def entries(self) -> Iterator[CacheEntry]:
        """Yield every complete entry, in a stable (kind, digest) order."""
        for kind in KINDS:
            kind_dir = os.path.join(self._base, kind)
            if not os.path.isdir(kind_dir):
                continue
            for shard in sorted(os.listdir(kind_dir)):
                shard_dir = os.path.join(kind_dir, shard)
                if not os.path.isdir(shard_dir):
                    continue
                for digest in sorted(os.listdir(shard_dir)):
                    path = os.path.join(shard_dir, digest)
                    try:
                        st = os.stat(path)
                    except FileNotFoundError:
                        continue
                    yield CacheEntry(CacheKey(kind, digest), path, st.st_size, max(st.st_atime, st.st_mtime))

    def gc(self, policy: GCPolicy) -> int:
        """Remove collectable entries and return the number of bytes reclaimed.

        Entries pinned by the policy are never touched; entries whose writer
        lock is currently held are skipped until the next run.
        """
        reclaimed = 0
        removed = 0
        for entry in list(self.entries()):
            if not policy.collectable(entry.key, entry.last_access):
                continue
            lock = FileLock(self._lock_path(entry.key), timeout=0)
            try:
                with lock:
                    os.unlink(entry.path)
                    self._drop_lock_file(entry.key)
            except Timeout:
                logger.debug("Skipping %s: writer lock held", entry.key)
                continue
            except FileNotFoundError:
                continue
            reclaimed += entry.size
            removed += 1
        self._sweep_tmp(policy)
        logger.info("Cache gc removed %d entries (%d bytes)", removed, reclaimed)
        return reclaimed

    def _drop_lock_file(self, key: CacheKey) -> None:
        # writers re-read the entry path once they hold the lock
        try:
            os.unlink(self._lock_path(key))
        except OSError as exc:
            logger.debug("Could not remove lock file for %s: %s", key, exc)

    def _sweep_tmp(self, policy: GCPolicy) -> None:
        cutoff = (policy.now if policy.now is not None else time.time()) - _STALE_TMP_SEC
        for name in os.listdir(self._tmp_dir):
            path = os.path.join(self._tmp_dir, name)
            try:
                if os.stat(path).st_mtime < cutoff:
                    os.unlink(path)
            except FileNotFoundError:
                continue

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        by_kind: Dict[str, Dict[str, int]] = {k: {"entries": 0, "bytes": 0} for k in KINDS}
        for entry in self.entries():
            by_kind[entry.key.kind]["entries"] += 1
            by_kind[entry.key.kind]["bytes"] += entry.size
        return {
            "root": self.root,
            "total_entries": sum(v["entries"] for v in by_kind.values()),
            "total_bytes": sum(v["bytes"] for v in by_kind.values()),
            "by_kind": by_kind,
        }
