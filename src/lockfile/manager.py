"""Lock manager: write, validate, serialize and persist lock records."""
from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from typing import FrozenSet, Optional, Sequence, Tuple, Union

from common.errors import IncompatibleLockFormat, LockParseError
from common.logging_utils import extra_context, is_debug_enabled
from pkgcache.keys import CacheKey
from resolver.graph import ResolvedGraph
from versioning.models import InterpreterDescriptor, PackageRequirement
from versioning.parser import canonical_requirement

from .hashing import root_hash
from .record import FORMAT_VERSION, Fresh, LockRecord, Stale, node_from_dict, node_to_dict

logger = logging.getLogger(__name__)

Validation = Union[Fresh, Stale]


class LockManager:
    """Lock records for one target interpreter."""

    def __init__(self, interpreter: InterpreterDescriptor):
        self.interpreter = interpreter

    def validate(self, record: LockRecord, roots: Sequence[PackageRequirement]) -> Validation:
        """Fresh iff the stored root hash equals the hash of ``roots`` now."""
        if record.interpreter != self.interpreter.key():
            return Stale(f"lock was written for interpreter {record.interpreter}, not {self.interpreter.key()}")
        current = root_hash(roots, self.interpreter)
        if record.root_hash != current:
            return Stale("root requirements changed since the lock was written")
        return Fresh()

    def write(self, graph: ResolvedGraph, roots: Sequence[PackageRequirement]) -> LockRecord:
        """Snapshot ``graph``; the hash is always derived from ``roots`` here."""
        return LockRecord(
            root_hash=root_hash(roots, self.interpreter),
            roots=tuple(sorted(canonical_requirement(r) for r in roots)),
            interpreter=self.interpreter.key(),
            graph=graph,
        )

    @staticmethod
    def serialize(record: LockRecord) -> bytes:
        """Stable JSON: sorted keys, two-space indent, trailing newline."""
        doc = {
            "lock_version": record.lock_version,
            "root_hash": record.root_hash,
            "interpreter": record.interpreter,
            "roots": list(record.roots),
            "packages": [node_to_dict(node) for node in record.graph],
        }
        return (json.dumps(doc, sort_keys=True, indent=2, ensure_ascii=False) + "\n").encode("utf-8")

    @staticmethod
    def read(data: bytes) -> LockRecord:
        """Parse a lock document.

        Raises:
            LockParseError: If the document is not valid JSON or lacks fields.
            IncompatibleLockFormat: If ``lock_version`` is not ours.
        """
        try:
            doc = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise LockParseError(f"lock document is not valid JSON: {exc}") from exc
        if not isinstance(doc, dict):
            raise LockParseError("lock document must be a JSON object")
        if "lock_version" not in doc:
            raise LockParseError("lock document has no 'lock_version'")
        version = doc["lock_version"]
        if version != FORMAT_VERSION or isinstance(version, bool):
            raise IncompatibleLockFormat(version, FORMAT_VERSION)

        for key, kind in (("root_hash", str), ("interpreter", str), ("roots", list), ("packages", list)):
            if key not in doc:
                raise LockParseError(f"lock document has no {key!r}")
            if not isinstance(doc[key], kind):
                raise LockParseError(f"lock field {key!r} has the wrong type")
        if not all(isinstance(r, str) for r in doc["roots"]):
            raise LockParseError("lock field 'roots' must be a list of strings")

        nodes = [node_from_dict(entry) for entry in doc["packages"]]
        try:
            graph = ResolvedGraph(nodes)
        except ValueError as exc:
            raise LockParseError(str(exc)) from exc
        return LockRecord(
            root_hash=doc["root_hash"],
            roots=tuple(doc["roots"]),
            interpreter=doc["interpreter"],
            graph=graph,
            lock_version=version,
        )

    def load(self, path: str) -> Optional[LockRecord]:
        """Read the lock at ``path``, or None if there is none."""
        try:
            with open(path, "rb") as fh:
                data = fh.read()
        except FileNotFoundError:
            return None
        return self.read(data)

    def save(self, record: LockRecord, path: str) -> None:
        """Atomically replace ``path`` with the serialized record."""
        data = self.serialize(record)
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".lockwright-", suffix=".tmp")
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
        logger.info("Wrote lock for %d packages to %s", len(record.graph), path)

    def ensure_locked(self, roots: Sequence[PackageRequirement], resolver, path: str) -> Tuple[LockRecord, bool]:
        """Reuse the lock at ``path`` when fresh, otherwise resolve and save.

        Re-resolution prefers the previously locked versions, so unrelated
        packages keep their pins. The lock file is only written once the new
        graph is complete. Returns (record, written).
        """
        existing = self.load(path)
        if existing is not None:
            verdict = self.validate(existing, roots)
            if verdict.is_fresh:
                logger.info("Lock %s is up to date", path)
                return existing, False
            logger.info("Lock %s is stale: %s", path, verdict.reason)

        preferences = {node.name: node.version for node in existing.graph} if existing is not None else {}
        if is_debug_enabled(logger):
            logger.debug("Resolving for lock", extra=extra_context(
                event="lock_resolve", component="lockfile", action="ensure_locked",
                target=path, count=len(preferences)))
        graph = resolver.resolve(roots, preferences=preferences)
        record = self.write(graph, roots)
        self.save(record, path)
        return record, True

    @staticmethod
    def pinned_keys(record: LockRecord) -> FrozenSet[CacheKey]:
        return frozenset(record.cache_keys())
