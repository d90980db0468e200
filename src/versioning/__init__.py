"""Versions, constraints and requirement models."""

from .constraint import Bound, ConstraintKind, Interval, VersionConstraint
from .models import (
    Artifact,
    InterpreterDescriptor,
    PackageMetadata,
    PackageName,
    PackageRequirement,
    SourceDescriptor,
    SourceKind,
    parse_version,
)
from .parser import canonical_requirement, parse_requirement, parse_requirements, split_requires_dist

__all__ = [
    "Artifact",
    "Bound",
    "ConstraintKind",
    "InterpreterDescriptor",
    "Interval",
    "PackageMetadata",
    "PackageName",
    "PackageRequirement",
    "SourceDescriptor",
    "SourceKind",
    "VersionConstraint",
    "canonical_requirement",
    "parse_requirement",
    "parse_requirements",
    "parse_version",
    "split_requires_dist",
]
