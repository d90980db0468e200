"""Exception taxonomy shared by the cache, provider, resolver and lock manager."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from resolver.conflicts import ConflictReport


class LockwrightError(Exception):
    """Base class for all errors raised by this project."""


class TransportError(LockwrightError):
    """A fetch through the network transport failed or timed out."""

    def __init__(self, identifier: str, cause: str):
        super().__init__(f"fetch of {identifier} failed: {cause}")
        self.identifier = identifier
        self.cause = cause


class MetadataUnavailable(LockwrightError):
    """Metadata for a package (or one of its versions) could not be obtained.

    Inside the resolver this rejects a single candidate; it only escapes when a
    strictly required package has no candidate left.
    """

    def __init__(self, name: str, version: Optional[str], cause: str):
        target = f"{name} {version}" if version else name
        super().__init__(f"metadata unavailable for {target}: {cause}")
        self.name = name
        self.version = version
        self.cause = cause


class CacheIntegrityViolation(LockwrightError):
    """Bytes under an existing cache key differ from the bytes being stored."""

    def __init__(self, key: str, detail: str):
        super().__init__(f"cache integrity violation for {key}: {detail}")
        self.key = key
        self.detail = detail


class CacheLockTimeout(LockwrightError):
    """The per-key writer lock could not be acquired in time."""

    def __init__(self, key: str, timeout: float):
        super().__init__(f"timed out after {timeout}s waiting for the writer lock of {key}")
        self.key = key
        self.timeout = timeout


class Unsatisfiable(LockwrightError):
    """No assignment satisfies the root requirements."""

    def __init__(self, report: "ConflictReport"):
        super().__init__(report.describe())
        self.report = report


class ResolutionBudgetExceeded(LockwrightError):
    """The search exceeded its configured step budget."""

    def __init__(self, steps: int, budget: int):
        super().__init__(f"resolution exceeded its budget of {budget} steps (ran {steps})")
        self.steps = steps
        self.budget = budget


class LockParseError(LockwrightError):
    """A lock document could not be parsed."""


class IncompatibleLockFormat(LockwrightError):
    """A lock document declares a format version this code does not read."""

    def __init__(self, found, expected: int):
        super().__init__(f"lock format version {found!r} is not supported (expected {expected})")
        self.found = found
        self.expected = expected


class InstallError(LockwrightError):
    """A resolved package could not be materialized into the target environment."""
