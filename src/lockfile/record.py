"""Lock record model and its JSON document form."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Tuple

from common.errors import LockParseError
from pkgcache.keys import CacheKey
from resolver.graph import ResolvedGraph, ResolvedNode
from versioning.models import Artifact, PackageName, SourceDescriptor, parse_version
from versioning.parser import parse_requirement

FORMAT_VERSION = 1


@dataclass(frozen=True)
class Fresh:
    """The lock still matches the root requirements."""

    @property
    def is_fresh(self) -> bool:
        return True


@dataclass(frozen=True)
class Stale:
    """The lock no longer matches; ``reason`` says why."""
    reason: str

    @property
    def is_fresh(self) -> bool:
        return False


@dataclass(frozen=True)
class LockRecord:
    """Hash-guarded snapshot of a resolved graph.

    Built by LockManager.write or LockManager.read, never by hand, so the
    stored hash always matches the roots it was computed from.
    """
    root_hash: str
    roots: Tuple[str, ...]
    interpreter: str
    graph: ResolvedGraph
    lock_version: int = FORMAT_VERSION

    def versions(self) -> Dict[str, str]:
        return self.graph.versions()

    def cache_keys(self) -> Iterator[CacheKey]:
        """Cache entries this lock needs, for pinning during gc."""
        for node in self.graph:
            yield CacheKey.for_metadata(node.name, node.version, node.source)
            if node.source.is_direct:
                yield CacheKey.for_direct(node.name, node.source)
                continue
            for artifact in node.artifacts:
                yield CacheKey.for_artifact(node.name, node.version, node.source, artifact.format_tag)


def node_to_dict(node: ResolvedNode) -> Dict[str, Any]:
    return {
        "name": str(node.name),
        "version": str(node.version),
        "source": node.source.to_dict(),
        "extras": list(node.extras),
        "dependencies": [str(d) for d in node.dependencies],
        "requirements": [str(r) for r in node.requirements],
        "artifacts": [
            {"digest": a.digest, "filename": a.filename, "packagetype": a.packagetype, "url": a.url}
            for a in node.artifacts
        ],
    }


def _field(doc: Dict[str, Any], key: str, kind, where: str):
    if key not in doc:
        raise LockParseError(f"{where}: missing field {key!r}")
    value = doc[key]
    if not isinstance(value, kind):
        raise LockParseError(f"{where}: field {key!r} has the wrong type")
    return value


def _string_list(doc: Dict[str, Any], key: str, where: str, required: bool = True) -> List[str]:
    if not required and key not in doc:
        return []
    values = _field(doc, key, list, where)
    if not all(isinstance(v, str) for v in values):
        raise LockParseError(f"{where}: field {key!r} must be a list of strings")
    return values


def _artifact_from_dict(doc: Any, where: str) -> Artifact:
    if not isinstance(doc, dict):
        raise LockParseError(f"{where}: artifact entries must be objects")
    digest = doc.get("digest")
    if digest is not None and not (isinstance(digest, str) and digest.startswith("sha256:")):
        raise LockParseError(f"{where}: unsupported artifact digest {digest!r}")
    return Artifact(
        filename=_field(doc, "filename", str, where),
        url=_field(doc, "url", str, where),
        sha256=digest[len("sha256:"):] if digest else None,
        packagetype=doc.get("packagetype") or "bdist_wheel",
    )


def node_from_dict(doc: Any) -> ResolvedNode:
    """Rebuild one node; unknown keys are ignored.

    Raises:
        LockParseError: On missing or ill-typed fields.
    """
    if not isinstance(doc, dict):
        raise LockParseError("package entries must be objects")
    where = f"package {doc.get('name', '?')!r}"
    try:
        source_doc = _field(doc, "source", dict, where)
        source = SourceDescriptor.from_dict(source_doc)
        return ResolvedNode(
            name=PackageName(_field(doc, "name", str, where)),
            version=parse_version(_field(doc, "version", str, where)),
            source=source,
            extras=tuple(_string_list(doc, "extras", where, required=False)),
            dependencies=tuple(PackageName(d) for d in _string_list(doc, "dependencies", where)),
            requirements=tuple(parse_requirement(r) for r in _string_list(doc, "requirements", where, required=False)),
            artifacts=tuple(
                _artifact_from_dict(a, where) for a in _field(doc, "artifacts", list, where)
            ) if "artifacts" in doc else (),
        )
    except (KeyError, ValueError) as exc:
        raise LockParseError(f"{where}: {exc}") from exc
