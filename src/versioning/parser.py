"""Requirement parsing utilities.

Turns PEP 508 requirement strings (from a manifest, a requirements file or a
package's ``Requires-Dist``) into PackageRequirement values.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import requirements
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from .constraint import VersionConstraint
from .models import PackageName, PackageRequirement

logger = logging.getLogger(__name__)

_EXTRA_MARKER = re.compile(r"""extra\s*==\s*["']([^"']+)["']""")


def parse_requirement(text: str) -> PackageRequirement:
    """Parse one PEP 508 requirement string.

    Raises:
        ValueError: If the string is not a valid requirement.
    """
    raw = text.strip()
    try:
        req = Requirement(raw)
    except InvalidRequirement as exc:
        raise ValueError(f"invalid requirement {raw!r}: {exc}") from exc
    return PackageRequirement(
        name=PackageName(req.name),
        constraint=VersionConstraint.parse(req.specifier),
        marker=req.marker,
        extras=frozenset(canonicalize_name(e) for e in req.extras),
        url=req.url,
        raw=str(req),
    )


def parse_requirements(lines: Iterable[str]) -> List[PackageRequirement]:
    """Parse many requirement strings, skipping blanks and comments."""
    result = []
    for line in lines:
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            result.append(parse_requirement(stripped))
    return result


def split_requires_dist(
    entries: Sequence[str],
) -> Tuple[Tuple[PackageRequirement, ...], Dict[str, Tuple[PackageRequirement, ...]]]:
    """Split Requires-Dist entries into base requirements and per-extra ones.

    Entries gated by ``extra == "name"`` belong to that extra; they keep their
    marker so the extra name is checked again at evaluation time.
    """
    base: List[PackageRequirement] = []
    extras: Dict[str, List[PackageRequirement]] = {}
    for entry in entries:
        req = parse_requirement(entry)
        names = _EXTRA_MARKER.findall(str(req.marker)) if req.marker is not None else []
        if not names:
            base.append(req)
            continue
        for name in sorted({canonicalize_name(n) for n in names}):
            extras.setdefault(name, []).append(req)
    return tuple(base), {k: tuple(v) for k, v in sorted(extras.items())}


def canonical_requirement(req: PackageRequirement) -> str:
    """Stable text form used for hashing root requirements."""
    text = str(req.name)
    if req.extras:
        text += "[" + ",".join(sorted(req.extras)) + "]"
    if req.url:
        text += " @ " + req.url
    elif not req.constraint.is_any:
        text += str(req.constraint)
    if req.marker is not None:
        text += "; " + str(req.marker)
    return text


def load_requirements_file(path: str) -> List[PackageRequirement]:
    """Read a requirements.txt style file into PackageRequirements.

    Editable and VCS lines become direct-URL requirements when they carry a
    name; lines without one are skipped with a warning.
    """
    with open(path, "r", encoding="utf-8") as fh:
        body = fh.read()
    result = []
    for entry in requirements.parse(body):
        text: Optional[str] = getattr(entry, "line", None)
        try:
            result.append(parse_requirement(text or ""))
            continue
        except ValueError:
            pass
        if entry.name and getattr(entry, "uri", None):
            result.append(parse_requirement(f"{entry.name} @ {entry.uri}"))
        else:
            logger.warning("Skipping unsupported requirement line in %s: %s", path, text)
    return result
