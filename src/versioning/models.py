"""Data models for package identity, requirements and metadata."""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from packaging.markers import Marker
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from .constraint import VersionConstraint

_SDIST_EXTENSIONS = (".tar.gz", ".tar.bz2", ".tar.xz", ".tgz", ".zip")


def parse_version(text: str) -> Version:
    """Parse a PEP 440 version, raising ValueError on garbage."""
    try:
        return Version(str(text).strip())
    except InvalidVersion as exc:
        raise ValueError(f"invalid version: {text!r}") from exc


class PackageName:
    """Normalized, case-insensitive package identifier (PEP 503).

    Equality, hashing and ordering use the normalized form only; the spelling
    first seen is kept for display.
    """

    __slots__ = ("normalized", "display")

    def __init__(self, raw: str):
        if isinstance(raw, PackageName):
            self.normalized = raw.normalized
            self.display = raw.display
            return
        text = str(raw).strip()
        if not text:
            raise ValueError("package name must not be empty")
        self.normalized = canonicalize_name(text)
        self.display = text

    def __eq__(self, other) -> bool:
        if isinstance(other, PackageName):
            return self.normalized == other.normalized
        if isinstance(other, str):
            return self.normalized == canonicalize_name(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.normalized)

    def __lt__(self, other: "PackageName") -> bool:
        return self.normalized < PackageName(other).normalized

    def __str__(self) -> str:
        return self.normalized

    def __repr__(self) -> str:
        return f"PackageName({self.normalized!r})"


class SourceKind(Enum):
    """Where a distribution comes from."""
    REGISTRY = "registry"
    URL = "url"
    PATH = "path"


@dataclass(frozen=True, order=True)
class SourceDescriptor:
    """Registry index entry or direct URL/local path."""
    kind: SourceKind
    location: str

    @classmethod
    def registry(cls, index_url: str) -> "SourceDescriptor":
        return cls(SourceKind.REGISTRY, index_url if index_url.endswith("/") else index_url + "/")

    @classmethod
    def direct(cls, location: str) -> "SourceDescriptor":
        if location.startswith("file://"):
            return cls(SourceKind.PATH, location[len("file://"):])
        if "://" in location:
            return cls(SourceKind.URL, location)
        return cls(SourceKind.PATH, location)

    @property
    def is_direct(self) -> bool:
        return self.kind is not SourceKind.REGISTRY

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "location": self.location}

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> "SourceDescriptor":
        return cls(SourceKind(data["kind"]), str(data["location"]))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.location}"


@dataclass(frozen=True)
class InterpreterDescriptor:
    """Opaque description of the target interpreter.

    Only used to evaluate environment markers and as part of cache/lock keys;
    nothing here installs or switches interpreters.
    """
    version: str
    implementation: str = "cpython"
    abi: Optional[str] = None
    platform: str = "linux"
    machine: str = "x86_64"

    @classmethod
    def current(cls) -> "InterpreterDescriptor":
        info = sys.version_info
        impl = sys.implementation.name
        abi = f"cp{info.major}{info.minor}" if impl == "cpython" else None
        return cls(
            version=f"{info.major}.{info.minor}.{info.micro}",
            implementation=impl,
            abi=abi,
            platform=sys.platform,
            machine=platform.machine().lower() or "unknown",
        )

    @property
    def python_version(self) -> str:
        return ".".join(self.version.split(".")[:2])

    def key(self) -> str:
        """Stable identifier used inside cache and lock keys."""
        return "-".join([self.implementation, self.version, self.abi or "none", self.platform, self.machine])

    def marker_environment(self) -> Dict[str, str]:
        """PEP 508 marker environment for this interpreter."""
        system = {"linux": "Linux", "darwin": "Darwin", "win32": "Windows"}.get(self.platform, self.platform)
        return {
            "implementation_name": self.implementation,
            "implementation_version": self.version,
            "os_name": "nt" if self.platform == "win32" else "posix",
            "platform_machine": self.machine,
            "platform_python_implementation": {"cpython": "CPython", "pypy": "PyPy"}.get(
                self.implementation, self.implementation
            ),
            "platform_release": "",
            "platform_system": system,
            "platform_version": "",
            "python_full_version": self.version,
            "python_version": self.python_version,
            "sys_platform": self.platform,
        }


@dataclass(frozen=True)
class PackageRequirement:
    """A dependency edge as declared: name, constraint, marker, extras."""
    name: PackageName
    constraint: VersionConstraint
    marker: Optional[Marker] = None
    extras: FrozenSet[str] = frozenset()
    url: Optional[str] = None
    raw: str = ""

    def applies_to(self, interpreter: InterpreterDescriptor, extra: Optional[str] = None) -> bool:
        """Evaluate the environment marker; requirements without one always apply."""
        if self.marker is None:
            return True
        env = interpreter.marker_environment()
        env["extra"] = extra or ""
        return self.marker.evaluate(env)

    @property
    def source(self) -> Optional[SourceDescriptor]:
        return SourceDescriptor.direct(self.url) if self.url else None

    def __str__(self) -> str:
        if self.raw:
            return self.raw
        text = str(self.name)
        if self.extras:
            text += "[" + ",".join(sorted(self.extras)) + "]"
        if self.url:
            text += f" @ {self.url}"
        else:
            text += str(self.constraint) if not self.constraint.is_any else ""
        if self.marker is not None:
            text += f"; {self.marker}"
        return text


@dataclass(frozen=True)
class Artifact:
    """One downloadable distribution file of a release."""
    filename: str
    url: str
    sha256: Optional[str]
    packagetype: str = "bdist_wheel"

    @property
    def digest(self) -> Optional[str]:
        return f"sha256:{self.sha256}" if self.sha256 else None

    @property
    def format_tag(self) -> str:
        """Distribution-format tag used in artifact cache keys."""
        if self.filename.endswith(".whl"):
            # name-ver(-build)?-py-abi-plat.whl
            return "wheel:" + "-".join(self.filename[:-4].split("-")[-3:])
        lower = self.filename.lower()
        for ext in _SDIST_EXTENSIONS:
            if lower.endswith(ext):
                return "sdist:" + ext[1:]
        return "sdist:" + lower.rpartition(".")[2]


@dataclass(frozen=True)
class PackageMetadata:
    """Everything the resolver needs to know about one release."""
    name: PackageName
    version: Version
    requirements: Tuple[PackageRequirement, ...]
    source: SourceDescriptor
    extras: Mapping[str, Tuple[PackageRequirement, ...]] = field(default_factory=dict)
    artifacts: Tuple[Artifact, ...] = ()
    requires_python: Optional[str] = None

    def requirements_for(self, extras) -> Tuple[Tuple[Optional[str], PackageRequirement], ...]:
        """Base requirements plus those of the requested extras.

        Each item is (extra or None, requirement) in declaration order; unknown
        extras contribute nothing.
        """
        items = [(None, req) for req in self.requirements]
        for extra in sorted(extras):
            items.extend((extra, req) for req in self.extras.get(extra, ()))
        return tuple(items)
