"""Conflict-driven backtracking resolver with backjumping.

The search keeps an explicit stack of decisions. Each step picks the
required-but-unassigned package with the fewest viable candidates and tries
them newest first. A candidate whose dependencies cannot be combined with
what is already required is excluded, and the decisions that caused the
collision are remembered with the exclusion. When a package runs out of
candidates the search jumps back to the most recent decision among those
causes, instead of the previous one.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from packaging.version import Version

from constants import Constants, ExtrasPolicy
from common.errors import MetadataUnavailable, ResolutionBudgetExceeded, Unsatisfiable
from common.logging_utils import Timer, extra_context, is_debug_enabled
from versioning.models import (
    InterpreterDescriptor,
    PackageMetadata,
    PackageName,
    PackageRequirement,
    SourceDescriptor,
)

from .conflicts import Conflict, ConflictReport
from .graph import ResolvedGraph, ResolvedNode
from .state import ROOT, ActiveConstraint, Contribution, Decision, SearchState, combine

logger = logging.getLogger(__name__)

# (reasons, cause, metadata error, conflicts) for a rejected candidate
Rejection = Tuple[FrozenSet[int], str, Optional[MetadataUnavailable], Tuple[Conflict, ...]]


def _show(constraint) -> str:
    return str(constraint) or "any version"


def _unique(requirements: Iterable[PackageRequirement]) -> Tuple[PackageRequirement, ...]:
    seen = set()
    result = []
    for req in requirements:
        if str(req) not in seen:
            seen.add(str(req))
            result.append(req)
    return tuple(result)


@dataclass(frozen=True)
class ResolverConfig:
    """Search tunables."""
    max_steps: int = 100000
    prefetch_width: int = 4
    allow_prereleases: bool = False
    extras_policy: ExtrasPolicy = ExtrasPolicy.UNION

    @classmethod
    def from_constants(cls) -> "ResolverConfig":
        return cls(
            max_steps=int(Constants.RESOLVER_MAX_STEPS),
            prefetch_width=int(Constants.RESOLVER_PREFETCH_WIDTH),
            allow_prereleases=bool(Constants.RESOLVER_ALLOW_PRERELEASES),
            extras_policy=ExtrasPolicy(Constants.EXTRAS_POLICY),
        )


class Resolver:
    """Resolve root requirements into a ResolvedGraph.

    Args:
        provider: A MetadataProvider (or anything with the same methods).
        interpreter: Target interpreter; defaults to the provider's.
        config: Search tunables; defaults come from Constants.
    """

    def __init__(self, provider, interpreter: Optional[InterpreterDescriptor] = None,
                 config: Optional[ResolverConfig] = None):
        self.provider = provider
        self.interpreter = interpreter or provider.interpreter
        self.config = config or ResolverConfig.from_constants()

    def resolve(self, roots: Sequence[PackageRequirement],
                preferences: Optional[Mapping[Union[str, PackageName], Union[str, Version]]] = None) -> ResolvedGraph:
        """Find one version per required package.

        ``preferences`` (usually the versions of a previous lock) are tried
        first when still viable.

        Raises:
            Unsatisfiable: When no assignment satisfies the roots.
            MetadataUnavailable: When a required package has no candidate
                whose metadata could be fetched.
            ResolutionBudgetExceeded: When the step budget runs out.
        """
        search = _Search(self.provider, self.interpreter, self.config, preferences or {})
        with Timer() as timer:
            graph = search.run(roots)
        logger.info("Resolved %d packages in %d steps", len(graph), search.steps)
        if is_debug_enabled(logger):
            logger.debug("Resolution finished", extra=extra_context(
                event="resolve_done", component="resolver", action="resolve", outcome="success",
                count=len(graph), steps=search.steps, backjumps=search.backjumps,
                duration_ms=timer.duration_ms()))
        return graph


class _Search:
    """State and bookkeeping of a single resolve() call."""

    def __init__(self, provider, interpreter: InterpreterDescriptor, config: ResolverConfig,
                 preferences: Mapping[Union[str, PackageName], Union[str, Version]]):
        self.provider = provider
        self.interpreter = interpreter
        self.config = config
        self.strict_extras = config.extras_policy is ExtrasPolicy.STRICT
        self.preferences: Dict[PackageName, Version] = {
            PackageName(k): v if isinstance(v, Version) else Version(str(v)) for k, v in preferences.items()
        }
        self.state = SearchState()
        self.steps = 0
        self.backjumps = 0
        self._versions: Dict[Tuple[PackageName, SourceDescriptor], Union[Tuple[Version, ...], MetadataUnavailable]] = {}
        self._metadata: Dict[Tuple[PackageName, Version, SourceDescriptor], Union[PackageMetadata, MetadataUnavailable]] = {}

    def run(self, roots: Sequence[PackageRequirement]) -> ResolvedGraph:
        for req in roots:
            if not req.applies_to(self.interpreter):
                logger.debug("Root requirement %s is inert for this interpreter", req)
                continue
            self.state.contribute(req.name, Contribution(req, ROOT, None, (str(req),)))
        while True:
            picked = self._select()
            if picked is None:
                return self._build_graph()
            name, active, candidates = picked
            self._decide(name, active, candidates)

    # -- bookkeeping -------------------------------------------------------

    def _tick(self) -> None:
        self.steps += 1
        if self.steps > self.config.max_steps:
            raise ResolutionBudgetExceeded(self.steps, self.config.max_steps)

    def _source(self, active: ActiveConstraint) -> SourceDescriptor:
        return active.source or self.provider.default_source

    def _active(self, name: PackageName, extra: Iterable[Contribution] = ()) -> ActiveConstraint:
        return combine(list(self.state.contributions_for(name)) + list(extra), self.strict_extras)

    def _available(self, name: PackageName, source: SourceDescriptor) -> Union[Tuple[Version, ...], MetadataUnavailable]:
        key = (name, source)
        if key not in self._versions:
            try:
                self._versions[key] = tuple(self.provider.available_versions(name, source))
            except MetadataUnavailable as exc:
                logger.debug("No version listing for %s: %s", name, exc)
                self._versions[key] = exc
        return self._versions[key]

    def _metadata_of(self, name: PackageName, version: Version,
                     source: SourceDescriptor) -> Union[PackageMetadata, MetadataUnavailable]:
        key = (name, version, source)
        if key not in self._metadata:
            try:
                self._metadata[key] = self.provider.metadata_for(name, version, source)
            except MetadataUnavailable as exc:
                logger.debug("Rejecting %s %s: %s", name, version, exc)
                self._metadata[key] = exc
        return self._metadata[key]

    def _candidates(self, name: PackageName, active: ActiveConstraint) -> List[Version]:
        """Viable versions for ``name`` in the order they should be tried."""
        if active.problem or active.constraint is None:
            return []
        versions = self._available(name, self._source(active))
        if isinstance(versions, MetadataUnavailable):
            return []
        excluded = self.state.excluded(name)
        allowed = [v for v in versions if active.constraint.contains(v) and v not in excluded]
        if not (self.config.allow_prereleases or active.constraint.prereleases):
            finals = [v for v in allowed if not v.is_prerelease]
            if finals:
                allowed = finals
        allowed.sort(reverse=True)
        preferred = self.preferences.get(name)
        if preferred is not None and preferred in allowed:
            allowed.remove(preferred)
            allowed.insert(0, preferred)
        return allowed

    @staticmethod
    def _conflict(name: PackageName, contributions: Iterable[Contribution], reason: str) -> Conflict:
        return Conflict(name, tuple(c.chain for c in contributions), reason)

    # -- search ------------------------------------------------------------

    def _select(self) -> Optional[Tuple[PackageName, ActiveConstraint, List[Version]]]:
        best = None
        for name in self.state.frontier():
            active = self._active(name)
            candidates = self._candidates(name, active)
            if best is None or len(candidates) < len(best[2]):
                best = (name, active, candidates)
            if not candidates:
                break
        return best

    def _decide(self, name: PackageName, active: ActiveConstraint, candidates: List[Version]) -> None:
        source = self._source(active)
        width = self.config.prefetch_width
        if width > 1 and len(candidates) > 1 and not source.is_direct:
            self.provider.prefetch(name, candidates[:width], source)
        for version in candidates:
            self._tick()
            rejection = self._try(name, version, source, active)
            if rejection is None:
                return
            reasons, cause, error, conflicts = rejection
            self.state.exclude(name, version, reasons, cause, error, conflicts)
        self._exhausted(name, active)

    def _path(self, name: PackageName, version: Version) -> Tuple[str, ...]:
        first = self.state.contributions_for(name)[0]
        return first.chain + (f"{name} {version}",)

    def _try(self, name: PackageName, version: Version, source: SourceDescriptor,
             active: ActiveConstraint) -> Optional[Rejection]:
        meta = self._metadata_of(name, version, source)
        if isinstance(meta, MetadataUnavailable):
            return frozenset(), f"metadata unavailable: {meta.cause}", meta, ()

        index = self.state.depth
        path = self._path(name, version)
        additions, expanded = self._expand(name, meta, path, index, active.extras)

        for dep in dict.fromkeys(n for n, _ in additions):
            new = [c for n, c in additions if n == dep]
            rejection = self._forward_check(name, version, source, dep, new)
            if rejection is not None:
                if is_debug_enabled(logger):
                    logger.debug("Candidate rejected", extra=extra_context(
                        event="candidate_rejected", component="resolver", action="try",
                        package_name=str(name), version=str(version), outcome=rejection[1]))
                return rejection

        self.state.push(Decision(index, name, version, source, meta, path), additions, expanded)
        if is_debug_enabled(logger):
            logger.debug("Decision", extra=extra_context(
                event="decision", component="resolver", action="push",
                package_name=str(name), version=str(version), depth=index))
        return None

    def _expand(self, name: PackageName, meta: PackageMetadata, path: Tuple[str, ...], index: int,
                extras: FrozenSet[str]):
        """Active requirements a candidate adds, plus the extras it expands.

        With the union policy, asking an already selected package for a new
        extra pulls in that extra's requirements, attributed to this decision.
        """
        additions: List[Tuple[PackageName, Contribution]] = []
        expanded: List[Tuple[PackageName, str]] = [(name, e) for e in sorted(extras)]
        seen: Dict[PackageName, Set[str]] = {name: set(extras)}
        pending = deque((extra, req, name, path) for extra, req in meta.requirements_for(extras))
        while pending:
            extra, req, parent, parent_path = pending.popleft()
            if not req.applies_to(self.interpreter, extra):
                continue
            additions.append((req.name, Contribution(req, index, parent, parent_path + (str(req),))))
            if self.strict_extras or not req.extras:
                continue
            if req.name == name:
                target_meta, target_path = meta, path
            else:
                target = self.state.assigned.get(req.name)
                if target is None:
                    continue
                target_meta, target_path = target.metadata, target.path
            done = self.state.expanded_extras(req.name) | seen.setdefault(req.name, set())
            missing = sorted(set(req.extras) - done)
            seen[req.name].update(missing)
            for e in missing:
                expanded.append((req.name, e))
                pending.extend((e, r, req.name, target_path) for r in target_meta.extras.get(e, ()))
        return additions, expanded

    def _forward_check(self, name: PackageName, version: Version, source: SourceDescriptor,
                       dep: PackageName, new: List[Contribution]) -> Optional[Rejection]:
        """Would adding ``new`` to ``dep`` still leave a way to satisfy it?"""
        involved = list(self.state.contributions_for(dep)) + new
        combined = self._active(dep, new)
        reasons = set(combined.origins)
        reasons.discard(self.state.depth)
        if combined.problem:
            conflict = self._conflict(dep, involved, combined.problem)
            return frozenset(reasons), f"{dep}: {combined.problem}", None, (conflict,)

        if dep == name:
            if combined.source is not None and combined.source != source:
                conflict = self._conflict(dep, involved, f"requested from {combined.source.location}")
                return frozenset(reasons), f"{dep}: source mismatch", None, (conflict,)
            if not combined.constraint.contains(version):
                conflict = self._conflict(dep, involved, f"{dep} {version} does not satisfy itself")
                return frozenset(reasons), f"{dep}: requires itself at another version", None, (conflict,)
            return None

        assigned = self.state.assigned.get(dep)
        if assigned is not None:
            reasons.add(assigned.index)
            if combined.source is not None and combined.source != assigned.source:
                conflict = self._conflict(dep, involved, f"{dep} already selected from {assigned.source.location}")
                return frozenset(reasons), f"{dep}: source mismatch", None, (conflict,)
            if not combined.constraint.contains(assigned.version):
                conflict = self._conflict(dep, involved, f"{dep} {assigned.version} is already selected")
                return frozenset(reasons), f"{dep} {assigned.version} violates {combined.constraint}", None, (conflict,)
            return None

        if self._candidates(dep, combined):
            return None
        listing = self._available(dep, self._source(combined))
        if isinstance(listing, MetadataUnavailable):
            return frozenset(reasons), f"{dep}: {listing.cause}", listing, ()
        conflicts: List[Conflict] = []
        excluded = self.state.excluded(dep)
        for v in listing:
            if combined.constraint.contains(v) and v in excluded:
                reasons |= excluded[v].reasons
                conflicts.extend(excluded[v].conflicts)
        if not conflicts:
            conflicts.append(self._conflict(
                dep, involved, f"no version of {dep} satisfies {_show(combined.constraint)}"))
        return frozenset(reasons), f"{dep}: no viable version", None, tuple(conflicts)

    def _exhausted(self, name: PackageName, active: ActiveConstraint) -> None:
        """Every candidate of ``name`` failed: backjump or give up.

        The conflicts explaining the failure are the ones carried by the
        exclusions still standing, so anything undone by an earlier backjump
        is not reported.
        """
        self._tick()
        contributions = self.state.contributions_for(name)
        reasons = set(active.origins)
        conflicts: List[Conflict] = []
        listing = self._available(name, self._source(active))
        if active.problem:
            conflicts.append(self._conflict(name, contributions, active.problem))
        elif isinstance(listing, MetadataUnavailable):
            conflicts.append(self._conflict(name, contributions, f"metadata unavailable: {listing.cause}"))
        else:
            excluded = self.state.excluded(name)
            matching = [v for v in listing if active.constraint.contains(v)]
            for v in matching:
                if v in excluded:
                    reasons |= excluded[v].reasons
                    conflicts.extend(excluded[v].conflicts)
            if not matching:
                shown = ", ".join(str(v) for v in listing[-5:]) or "none"
                conflicts.append(self._conflict(
                    name, contributions, f"no version matches {_show(active.constraint)} (available: {shown})"))

        if not reasons:
            self._give_up(name, active, listing, conflicts)

        target = max(reasons)
        culprit = self.state.stack[target]
        self.state.pop_to(target)
        self.state.exclude(culprit.name, culprit.version, reasons - {target}, f"conflict on {name}",
                           conflicts=tuple(conflicts))
        self.backjumps += 1
        if is_debug_enabled(logger):
            logger.debug("Backjump", extra=extra_context(
                event="backjump", component="resolver", action="backjump", package_name=str(name),
                target=f"{culprit.name} {culprit.version}", depth=target))

    def _give_up(self, name: PackageName, active: ActiveConstraint, listing,
                 conflicts: List[Conflict]) -> None:
        if isinstance(listing, MetadataUnavailable) and not active.problem:
            raise listing
        if not active.problem and active.constraint is not None:
            excluded = self.state.excluded(name)
            matching = [v for v in listing if active.constraint.contains(v)]
            errors = [excluded[v].error for v in matching if v in excluded]
            if matching and len(errors) == len(matching) and all(e is not None for e in errors):
                raise errors[0]
        report = ConflictReport.from_conflicts(conflicts)
        logger.debug("Resolution failed on %s after %d steps", name, self.steps)
        raise Unsatisfiable(report)

    def _build_graph(self) -> ResolvedGraph:
        nodes = []
        for decision in self.state.stack:
            active = self._active(decision.name)
            assert active.constraint is not None and active.constraint.contains(decision.version)
            extras = tuple(sorted(active.extras))
            declared = decision.metadata.requirements_for(extras)
            deps = sorted({req.name for extra, req in declared if req.applies_to(self.interpreter, extra)})
            nodes.append(ResolvedNode(
                name=decision.name,
                version=decision.version,
                source=decision.source,
                extras=extras,
                dependencies=tuple(deps),
                requirements=_unique(req for _, req in declared),
                artifacts=decision.metadata.artifacts,
            ))
        return ResolvedGraph(nodes)
