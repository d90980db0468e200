"""Dependency resolution.

- solver.py: the backjumping search and its configuration
- state.py: decision stack, contributions and exclusions
- graph.py: the resolved graph handed to the lock manager and installer
- conflicts.py: conflict chains reported when nothing satisfies the roots
"""

from .conflicts import Conflict, ConflictReport
from .graph import ResolvedGraph, ResolvedNode, verify_graph
from .solver import Resolver, ResolverConfig

__all__ = [
    "Conflict",
    "ConflictReport",
    "ResolvedGraph",
    "ResolvedNode",
    "Resolver",
    "ResolverConfig",
    "verify_graph",
]
