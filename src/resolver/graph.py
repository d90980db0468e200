"""Resolved dependency graph: one version per package name."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from packaging.version import Version

from versioning.models import (
    Artifact,
    InterpreterDescriptor,
    PackageName,
    PackageRequirement,
    SourceDescriptor,
)


@dataclass(frozen=True)
class ResolvedNode:
    """A chosen package version and its outgoing edges.

    ``requirements`` holds every declared requirement of the base package and
    its selected extras, including those whose marker is false for the
    interpreter; ``dependencies`` names only the edges that are active.
    """
    name: PackageName
    version: Version
    source: SourceDescriptor
    extras: Tuple[str, ...] = ()
    dependencies: Tuple[PackageName, ...] = ()
    requirements: Tuple[PackageRequirement, ...] = ()
    artifacts: Tuple[Artifact, ...] = ()

    def active_requirements(self, interpreter: InterpreterDescriptor) -> List[PackageRequirement]:
        """Requirements whose marker holds for the interpreter and this node's extras."""
        active = []
        for req in self.requirements:
            if req.applies_to(interpreter) or any(req.applies_to(interpreter, e) for e in self.extras):
                active.append(req)
        return active


class ResolvedGraph:
    """Immutable name -> node mapping, iterated in name order.

    Raises:
        ValueError: On duplicate names or an edge to a missing node.
    """

    def __init__(self, nodes: Iterable[ResolvedNode]):
        by_name: Dict[PackageName, ResolvedNode] = {}
        for node in nodes:
            if node.name in by_name:
                raise ValueError(f"duplicate package in graph: {node.name}")
            by_name[node.name] = node
        for node in by_name.values():
            for dep in node.dependencies:
                if dep not in by_name:
                    raise ValueError(f"{node.name} {node.version} depends on {dep}, which is not in the graph")
        self._nodes = {name: by_name[name] for name in sorted(by_name)}

    def __getitem__(self, name: Union[str, PackageName]) -> ResolvedNode:
        return self._nodes[PackageName(name)]

    def get(self, name: Union[str, PackageName]) -> Optional[ResolvedNode]:
        return self._nodes.get(PackageName(name))

    def __contains__(self, name) -> bool:
        return PackageName(name) in self._nodes

    def __iter__(self) -> Iterator[ResolvedNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ResolvedGraph):
            return NotImplemented
        return list(self) == list(other)

    def names(self) -> List[PackageName]:
        return list(self._nodes)

    def versions(self) -> Dict[str, str]:
        """Plain ``{name: version}`` view, handy for logging and tests."""
        return {str(n.name): str(n.version) for n in self}

    def __repr__(self) -> str:
        return f"ResolvedGraph({self.versions()!r})"


def _check_edge(graph: ResolvedGraph, owner: str, req: PackageRequirement) -> Optional[str]:
    target = graph.get(req.name)
    if target is None:
        return f"{owner}: {req} is not satisfied ({req.name} missing)"
    if req.url:
        if target.source != SourceDescriptor.direct(req.url):
            return f"{owner}: {req} is not satisfied ({req.name} comes from {target.source})"
    elif not req.constraint.contains(target.version):
        return f"{owner}: {req} is not satisfied by {req.name} {target.version}"
    missing = sorted(set(req.extras) - set(target.extras))
    if missing:
        return f"{owner}: {req} needs extras {missing} not selected for {req.name}"
    return None


def verify_graph(graph: ResolvedGraph, roots: Sequence[PackageRequirement],
                 interpreter: InterpreterDescriptor) -> List[str]:
    """Every root and every active edge that the graph fails to satisfy.

    An empty list means the graph is a valid solution for ``roots``.
    """
    problems = []
    for req in roots:
        if req.applies_to(interpreter):
            problem = _check_edge(graph, "<root>", req)
            if problem:
                problems.append(problem)
    for node in graph:
        owner = f"{node.name} {node.version}"
        for req in node.active_requirements(interpreter):
            problem = _check_edge(graph, owner, req)
            if problem:
                problems.append(problem)
    return problems
