"""Lock records: hash-guarded snapshots of a resolved graph."""

from .hashing import root_hash
from .manager import LockManager
from .record import FORMAT_VERSION, Fresh, LockRecord, Stale

__all__ = ["FORMAT_VERSION", "Fresh", "LockManager", "LockRecord", "Stale", "root_hash"]
