"""Version constraint algebra.

A constraint is a closed type: one interval with optional inclusive/exclusive
bounds, minus a set of excluded intervals. Every PEP 440 clause maps onto it:

- ``==1.2``  -> interval [1.2, 1.2.post0.dev0), which holds 1.2 and its local versions
- ``==1.2.*`` -> interval [1.2.dev0, 1.3.dev0)
- ``>=1.0,<2`` -> interval [1.0, 2.dev0); ``<V`` never admits pre-releases of V
- ``>1.0`` -> interval (1.0, ...)
- ``!=1.5`` / ``!=1.5.*`` -> exclusion
- ``~=1.4.2`` -> interval [1.4.2, 1.5.dev0)
- empty specifier -> any

Intervals treat versions as dense, so emptiness is decided on the bounds.
Membership additionally checks every clause with ``packaging`` so that
exclusions with no finite bound (``>1.0`` rejecting ``1.0.post1``) follow
PEP 440 exactly.

Intersection returns None when no version can satisfy both sides.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple, Union

from packaging.specifiers import InvalidSpecifier, Specifier, SpecifierSet
from packaging.version import InvalidVersion, Version

class ConstraintKind(Enum):
    """Shape of a constraint, for diagnostics and fast paths."""
    ANY = "any"
    EXACT = "exact"
    RANGE = "range"
    EXCLUSION = "exclusion"


@dataclass(frozen=True)
class Bound:
    version: Version
    inclusive: bool


def _max_lower(a: Optional[Bound], b: Optional[Bound]) -> Optional[Bound]:
    if a is None:
        return b
    if b is None:
        return a
    if a.version != b.version:
        return a if a.version > b.version else b
    return a if not a.inclusive else b


def _min_upper(a: Optional[Bound], b: Optional[Bound]) -> Optional[Bound]:
    if a is None:
        return b
    if b is None:
        return a
    if a.version != b.version:
        return a if a.version < b.version else b
    return a if not a.inclusive else b



def _local_ceiling(version: Version) -> Version:
    """Smallest version above ``version`` and every ``version+local``."""
    head = (f"{version.epoch}!" if version.epoch else "") + ".".join(str(p) for p in version.release)
    if version.pre is not None:
        head += f"{version.pre[0]}{version.pre[1]}"
    if version.dev is not None:
        post = f".post{version.post}" if version.post is not None else ""
        return Version(f"{head}{post}.dev{version.dev + 1}")
    post = 0 if version.post is None else version.post + 1
    return Version(f"{head}.post{post}.dev0")


def _first_prerelease(version: Version) -> Version:
    """Earliest pre-release of the release ``version`` belongs to."""
    return Version(f"{version.base_version}.dev0")


@lru_cache(maxsize=1024)
def _specifier(clause: str) -> Specifier:
    return Specifier(clause)


@dataclass(frozen=True)
class Interval:
    """Contiguous version range; a None bound is unbounded."""
    lower: Optional[Bound] = None
    upper: Optional[Bound] = None

    def contains(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower.version or (version == self.lower.version and not self.lower.inclusive):
                return False
        if self.upper is not None:
            if version > self.upper.version or (version == self.upper.version and not self.upper.inclusive):
                return False
        return True

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower.version > self.upper.version:
            return True
        if self.lower.version == self.upper.version:
            return not (self.lower.inclusive and self.upper.inclusive)
        return False

    def intersect(self, other: "Interval") -> "Interval":
        return Interval(_max_lower(self.lower, other.lower), _min_upper(self.upper, other.upper))

    @property
    def is_exact(self) -> bool:
        """True for a single release, with or without its local versions."""
        if self.lower is None or self.upper is None or not self.lower.inclusive:
            return False
        if self.upper.inclusive:
            return self.lower.version == self.upper.version
        return self.lower.version.local is None and self.upper.version == _local_ceiling(self.lower.version)

    @property
    def is_unbounded(self) -> bool:
        return self.lower is None and self.upper is None


def _lower_sort_key(interval: Interval):
    if interval.lower is None:
        return (0, None, 0)
    return (1, interval.lower.version, 0 if interval.lower.inclusive else 1)


def _interval_sort_key(interval: Interval):
    if interval.upper is None:
        upper = (1, None, 0)
    else:
        upper = (0, interval.upper.version, 1 if interval.upper.inclusive else 0)
    return (_lower_sort_key(interval), upper)


def _covers_start(excl: Interval, cur: Optional[Bound]) -> bool:
    """True when ``excl`` covers the first point(s) of a range starting at ``cur``."""
    if excl.lower is None:
        return True
    if cur is None:
        return False
    if excl.lower.version < cur.version:
        return True
    if excl.lower.version == cur.version:
        return excl.lower.inclusive or not cur.inclusive
    return False


def _fully_excluded(interval: Interval, exclusions: Iterable[Interval]) -> bool:
    """Sweep sorted exclusions across the interval; versions are treated as dense."""
    cur = interval.lower
    for excl in sorted(exclusions, key=_lower_sort_key):
        if Interval(cur, interval.upper).is_empty():
            return True
        if not _covers_start(excl, cur):
            # The exclusion might still start before cur if it ends before it
            if excl.upper is not None and cur is not None and (
                excl.upper.version < cur.version
                or (excl.upper.version == cur.version and not (excl.upper.inclusive and cur.inclusive))
            ):
                continue
            return False
        if excl.upper is None:
            return True
        candidate = Bound(excl.upper.version, not excl.upper.inclusive)
        if cur is None or _max_lower(cur, candidate) is candidate:
            cur = candidate
    return Interval(cur, interval.upper).is_empty()


def _bump_prefix(release: Tuple[int, ...], epoch: int) -> Version:
    bumped = list(release[:-1]) + [release[-1] + 1]
    prefix = f"{epoch}!" if epoch else ""
    return Version(prefix + ".".join(str(p) for p in bumped) + ".dev0")


def _prefix_interval(text: str) -> Interval:
    """Interval of all versions whose release starts with ``text`` (``1.2`` for ``1.2.*``)."""
    base = Version(text)
    lower = Version(((f"{base.epoch}!") if base.epoch else "") + ".".join(str(p) for p in base.release) + ".dev0")
    return Interval(Bound(lower, True), Bound(_bump_prefix(base.release, base.epoch), False))


def _compatible_interval(text: str) -> Interval:
    base = Version(text)
    if len(base.release) < 2:
        raise ValueError(f"~= requires at least two release segments: {text!r}")
    return Interval(Bound(base, True), Bound(_bump_prefix(base.release[:-1], base.epoch), False))




def _upper_bound(op: str, version: Version) -> Bound:
    if op == "<=":
        return Bound(_local_ceiling(version), False)
    if version.is_prerelease:
        return Bound(version, False)
    if version.post is None:
        return Bound(_first_prerelease(version), False)
    # <1.0.post2 still rejects 1.0rc1; that gap is left to the clause check
    return Bound(version, False)


def _clause_interval(op: str, version: Version) -> Optional[Interval]:
    if op in ("==", "!="):
        if version.local is not None:
            return Interval(Bound(version, True), Bound(version, True))
        return Interval(Bound(version, True), Bound(_local_ceiling(version), False))
    if op == "===":
        return Interval(Bound(version, True), Bound(version, True))
    if op == ">=":
        return Interval(Bound(version, True), None)
    if op == ">":
        return Interval(Bound(_local_ceiling(version), True), None)
    if op in ("<", "<="):
        return Interval(None, _upper_bound(op, version))
    if op == "~=":
        return _compatible_interval(str(version))
    return None


_EMPTY_INTERVAL = Interval(Bound(Version("0"), False), Bound(Version("0"), False))


@dataclass(frozen=True)
class VersionConstraint:
    """Conjunction of version predicates in canonical form."""
    interval: Interval = field(default_factory=Interval)
    excluded: Tuple[Interval, ...] = ()
    clauses: Tuple[str, ...] = ()
    prereleases: bool = False

    @classmethod
    def any(cls) -> "VersionConstraint":
        return cls()

    @classmethod
    def parse(cls, text: Union[str, SpecifierSet, None]) -> "VersionConstraint":
        """Build a constraint from a PEP 440 specifier string.

        Contradictory clauses (``==1,==2``) yield a constraint whose
        ``is_empty()`` is True rather than an error. It still lists every
        clause, so two different contradictions never print the same.

        Raises:
            ValueError: If the specifier is malformed.
        """
        if text is None:
            return cls.any()
        try:
            spec_set = text if isinstance(text, SpecifierSet) else SpecifierSet(str(text).strip())
        except InvalidSpecifier as exc:
            raise ValueError(f"invalid version constraint: {text!r}") from exc
        result: Optional[VersionConstraint] = cls.any()
        clauses: List[str] = []
        for spec in sorted(spec_set, key=str):
            clause = cls._from_specifier(spec)
            clauses.extend(clause.clauses)
            if result is not None:
                result = result.intersect(clause)
        if result is None:
            return cls(_EMPTY_INTERVAL, (), tuple(sorted(set(clauses))), False)
        return result

    @classmethod
    def _from_specifier(cls, spec: Specifier) -> "VersionConstraint":
        op, text = spec.operator, spec.version
        clause = (f"{op}{text}",)
        try:
            if op in ("==", "!=") and text.endswith(".*"):
                interval = _prefix_interval(text[:-2])
                pre = False
            else:
                version = Version(text)
                pre = version.is_prerelease
                interval = _clause_interval(op, version)
        except InvalidVersion as exc:
            raise ValueError(f"invalid version in constraint {spec}") from exc
        if interval is None:
            raise ValueError(f"unsupported operator in constraint {spec}")
        if op == "!=":
            return cls(Interval(), (interval,), clause, False)
        return cls(interval, (), clause, pre)

    @property
    def kind(self) -> ConstraintKind:
        if self.interval.is_exact:
            return ConstraintKind.EXACT
        if self.interval.is_unbounded:
            return ConstraintKind.EXCLUSION if self.excluded else ConstraintKind.ANY
        return ConstraintKind.RANGE

    @property
    def is_any(self) -> bool:
        return self.kind is ConstraintKind.ANY

    def is_empty(self) -> bool:
        if self.interval.is_empty():
            return True
        if not self.excluded:
            return False
        return _fully_excluded(self.interval, self.excluded)

    def contains(self, version: Version) -> bool:
        """Pure membership test, ignoring pre-release policy."""
        if not self.interval.contains(version):
            return False
        if any(excl.contains(version) for excl in self.excluded):
            return False
        return all(_specifier(c).contains(version, prereleases=True) for c in self.clauses)

    def intersect(self, other: "VersionConstraint") -> Optional["VersionConstraint"]:
        """Conjunction of both constraints, or None when nothing satisfies it."""
        interval = self.interval.intersect(other.interval)
        excluded = tuple(sorted(set(self.excluded) | set(other.excluded), key=_interval_sort_key))
        merged = VersionConstraint(
            interval,
            excluded,
            tuple(sorted(set(self.clauses) | set(other.clauses))),
            self.prereleases or other.prereleases,
        )
        if merged.is_empty():
            return None
        return merged

    def __str__(self) -> str:
        return ",".join(self.clauses)
