"""Deterministic cache key derivation.

Two callers asking for the same (name, version, source[, format]) always
derive the same digest, so the store never holds duplicates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Union

from packaging.utils import canonicalize_version
from packaging.version import Version

from versioning.models import PackageName, SourceDescriptor

KIND_METADATA = "metadata"
KIND_ARTIFACT = "artifact"
KIND_DIRECT = "direct"
KINDS = (KIND_METADATA, KIND_ARTIFACT, KIND_DIRECT)


def _digest(parts) -> str:
    payload = json.dumps(parts, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _version_text(version: Union[str, Version]) -> str:
    """Equal versions (``1.0`` and ``1.0.0``) give the same text."""
    return canonicalize_version(Version(str(version)))


@dataclass(frozen=True, order=True)
class CacheKey:
    """Content key: a kind namespace plus a sha256 hex digest of the identity."""
    kind: str
    digest: str

    @classmethod
    def for_metadata(cls, name: Union[str, PackageName], version: Union[str, Version],
                     source: SourceDescriptor) -> "CacheKey":
        return cls(KIND_METADATA, _digest([
            KIND_METADATA, str(PackageName(name)), _version_text(version),
            source.kind.value, source.location,
        ]))

    @classmethod
    def for_artifact(cls, name: Union[str, PackageName], version: Union[str, Version],
                     source: SourceDescriptor, format_tag: str) -> "CacheKey":
        return cls(KIND_ARTIFACT, _digest([
            KIND_ARTIFACT, str(PackageName(name)), _version_text(version),
            source.kind.value, source.location, format_tag,
        ]))

    @classmethod
    def for_direct(cls, name: Union[str, PackageName], source: SourceDescriptor) -> "CacheKey":
        """Payload behind a direct URL/path reference, whose version is unknown until read."""
        return cls(KIND_DIRECT, _digest([KIND_DIRECT, str(PackageName(name)), source.kind.value, source.location]))

    @classmethod
    def parse(cls, text: str) -> "CacheKey":
        kind, _, digest = text.partition(":")
        if kind not in KINDS or len(digest) != 64:
            raise ValueError(f"invalid cache key: {text!r}")
        return cls(kind, digest)

    def __str__(self) -> str:
        return f"{self.kind}:{self.digest}"
