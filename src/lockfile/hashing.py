"""Content hash of the root requirements a lock was resolved for."""

import hashlib
import json
from typing import Iterable

from versioning.models import InterpreterDescriptor, PackageRequirement
from versioning.parser import canonical_requirement

HASH_PREFIX = "sha256:"


def root_hash(roots: Iterable[PackageRequirement], interpreter: InterpreterDescriptor) -> str:
    """Digest over the interpreter key and the sorted canonical root requirements.

    Root order, name spelling and whitespace do not matter; any change to a
    name, constraint, extra, URL or marker does.
    """
    payload = {
        "interpreter": interpreter.key(),
        "roots": sorted(canonical_requirement(r) for r in roots),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return HASH_PREFIX + hashlib.sha256(encoded.encode("utf-8")).hexdigest()
