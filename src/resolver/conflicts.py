"""Conflict records and the report attached to Unsatisfiable."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from versioning.models import PackageName

CHAIN_SEPARATOR = " -> "


@dataclass(frozen=True)
class Conflict:
    """Requirement chains that cannot hold together for one package.

    A chain walks from a root requirement through each selected package to
    the requirement that collided, e.g. ``("app", "app 1.0", "lib<2")``.
    """
    name: PackageName
    chains: Tuple[Tuple[str, ...], ...]
    reason: str

    @property
    def requirements(self) -> Tuple[str, ...]:
        """The colliding requirements, without the paths that led to them."""
        return tuple(sorted({chain[-1] for chain in self.chains if chain}))

    def describe(self) -> str:
        paths = " and ".join(CHAIN_SEPARATOR.join(chain) for chain in self.chains)
        return f"{self.name}: {paths} ({self.reason})"


@dataclass(frozen=True)
class ConflictReport:
    conflicts: Tuple[Conflict, ...]

    @classmethod
    def from_conflicts(cls, conflicts: Iterable[Conflict]) -> "ConflictReport":
        """Keep one conflict per (package, colliding requirements, reason).

        The same collision reached through different selected versions of
        the dependents is reported once, with the first path found.
        """
        seen = set()
        unique: List[Conflict] = []
        for conflict in conflicts:
            key = (conflict.name, conflict.requirements, conflict.reason)
            if key not in seen:
                seen.add(key)
                unique.append(conflict)
        return cls(tuple(unique))

    def packages(self) -> List[PackageName]:
        return sorted({c.name for c in self.conflicts})

    def describe(self) -> str:
        if not self.conflicts:
            return "no combination of versions satisfies the root requirements"
        lines = ["no combination of versions satisfies the root requirements:"]
        lines.extend("  " + c.describe() for c in self.conflicts)
        return "\n".join(lines)
