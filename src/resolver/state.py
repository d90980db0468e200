"""Search state for the resolver: an explicit decision stack.

Every piece of derived state (contributions, exclusions, expanded extras)
remembers the decision index it depends on, so popping the stack to any
depth restores exactly the state that existed at that depth.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from packaging.version import Version

from common.errors import MetadataUnavailable
from versioning.constraint import VersionConstraint
from versioning.models import PackageMetadata, PackageName, PackageRequirement, SourceDescriptor

from .conflicts import Conflict

ROOT = -1


@dataclass(frozen=True)
class Contribution:
    """One active requirement on a package and the decision that introduced it."""
    requirement: PackageRequirement
    origin: int
    parent: Optional[PackageName]
    chain: Tuple[str, ...]


@dataclass(frozen=True)
class Decision:
    index: int
    name: PackageName
    version: Version
    source: SourceDescriptor
    metadata: PackageMetadata
    path: Tuple[str, ...]


@dataclass(frozen=True)
class Exclusion:
    """A version ruled out for as long as every decision in ``reasons`` stands.

    ``conflicts`` are the requirement collisions that ruled it out; they are
    dropped together with the exclusion when a backjump undoes its reasons.
    """
    version: Version
    reasons: FrozenSet[int]
    cause: str
    error: Optional[MetadataUnavailable] = None
    conflicts: Tuple[Conflict, ...] = ()


@dataclass(frozen=True)
class ActiveConstraint:
    """Conjunction of all contributions on one name.

    ``problem`` is set when the contributions cannot be combined at all
    (empty intersection, two different direct sources, strict extras).
    """
    constraint: Optional[VersionConstraint]
    source: Optional[SourceDescriptor]
    extras: FrozenSet[str]
    origins: FrozenSet[int]
    problem: Optional[str] = None


def combine(contributions: Iterable[Contribution], strict_extras: bool = False) -> ActiveConstraint:
    constraint: Optional[VersionConstraint] = VersionConstraint.any()
    source: Optional[SourceDescriptor] = None
    extras = set()
    extras_sets = set()
    origins = set()
    problem = None
    for contribution in contributions:
        req = contribution.requirement
        origins.add(contribution.origin)
        extras.update(req.extras)
        extras_sets.add(frozenset(req.extras))
        if req.url:
            wanted = SourceDescriptor.direct(req.url)
            if source is not None and source != wanted and problem is None:
                problem = f"requested from both {source.location} and {wanted.location}"
            source = source or wanted
        if constraint is not None:
            constraint = constraint.intersect(req.constraint)
            if constraint is None and problem is None:
                problem = "version constraints have no common version"
    if strict_extras and len(extras_sets) > 1 and problem is None:
        requested = " vs ".join(
            "[" + ",".join(sorted(s)) + "]" for s in sorted(extras_sets, key=lambda s: sorted(s))
        )
        problem = f"different extras requested: {requested}"
    origins.discard(ROOT)
    return ActiveConstraint(constraint, source, frozenset(extras), frozenset(origins), problem)


class SearchState:
    """Mutable state of one resolution run."""

    def __init__(self) -> None:
        self.stack: List[Decision] = []
        self.assigned: Dict[PackageName, Decision] = {}
        self.contributions: Dict[PackageName, List[Contribution]] = {}
        self.exclusions: Dict[PackageName, Dict[Version, Exclusion]] = {}
        # name -> extra -> index of the decision that pulled its requirements in
        self.expanded: Dict[PackageName, Dict[str, int]] = {}

    @property
    def depth(self) -> int:
        return len(self.stack)

    def contribute(self, name: PackageName, contribution: Contribution) -> None:
        self.contributions.setdefault(name, []).append(contribution)

    def contributions_for(self, name: PackageName) -> List[Contribution]:
        return self.contributions.get(name, [])

    def frontier(self) -> List[PackageName]:
        """Names that are required but not yet assigned, in name order."""
        return sorted(n for n, contribs in self.contributions.items() if contribs and n not in self.assigned)

    def expanded_extras(self, name: PackageName) -> FrozenSet[str]:
        return frozenset(self.expanded.get(name, {}))

    def push(self, decision: Decision, contributions: Iterable[Tuple[PackageName, Contribution]],
             expanded: Iterable[Tuple[PackageName, str]]) -> None:
        assert decision.index == self.depth
        self.stack.append(decision)
        self.assigned[decision.name] = decision
        for name, contribution in contributions:
            self.contribute(name, contribution)
        for name, extra in expanded:
            self.expanded.setdefault(name, {}).setdefault(extra, decision.index)

    def exclude(self, name: PackageName, version: Version, reasons: Iterable[int], cause: str,
                error: Optional[MetadataUnavailable] = None, conflicts: Tuple[Conflict, ...] = ()) -> None:
        self.exclusions.setdefault(name, {})[version] = Exclusion(version, frozenset(reasons), cause, error, tuple(conflicts))

    def excluded(self, name: PackageName) -> Dict[Version, Exclusion]:
        return self.exclusions.get(name, {})

    def pop_to(self, depth: int) -> List[Decision]:
        """Undo every decision at index >= depth and everything derived from them."""
        popped = self.stack[depth:]
        del self.stack[depth:]
        for decision in popped:
            del self.assigned[decision.name]
        for name in list(self.contributions):
            kept = [c for c in self.contributions[name] if c.origin < depth]
            if kept:
                self.contributions[name] = kept
            else:
                del self.contributions[name]
        for name in list(self.exclusions):
            kept_excl = {v: e for v, e in self.exclusions[name].items() if all(r < depth for r in e.reasons)}
            if kept_excl:
                self.exclusions[name] = kept_excl
            else:
                del self.exclusions[name]
        for name in list(self.expanded):
            kept_extras = {e: i for e, i in self.expanded[name].items() if i < depth}
            if kept_extras:
                self.expanded[name] = kept_extras
            else:
                del self.expanded[name]
        return popped
