"""PyPI JSON API documents and wheel METADATA, normalized for the cache.

Upstream release JSON carries mutable fields (download stats, vulnerability
notes, ...). Only the immutable part of a release is kept, serialized as
canonical JSON, so every process derives byte-identical cache entries.
"""
from __future__ import annotations

import hashlib
import io
import json
import logging
import posixpath
import zipfile
from dataclasses import dataclass
from email.parser import BytesParser
from typing import Any, Dict, List, Optional

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from versioning.models import Artifact, PackageMetadata, PackageName, SourceDescriptor
from versioning.parser import split_requires_dist

logger = logging.getLogger(__name__)

DOCUMENT_SCHEMA = 1


@dataclass(frozen=True)
class ReleaseInfo:
    """One entry of a project's release listing."""
    version: Version
    yanked: bool
    requires_python: Optional[str]


def project_url(index_url: str, name: PackageName) -> str:
    return f"{index_url}{name}/json"


def release_url(index_url: str, name: PackageName, version: Version) -> str:
    return f"{index_url}{name}/{version}/json"


def _load_json(data: bytes, what: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"{what}: invalid JSON ({exc})") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"{what}: expected a JSON object")
    return parsed


def parse_project_listing(data: bytes) -> List[ReleaseInfo]:
    """Parse ``/pypi/<name>/json`` into release infos, skipping unusable entries.

    Releases without files cannot be installed and are dropped; a release is
    yanked only if every one of its files is.
    """
    doc = _load_json(data, "project listing")
    releases = doc.get("releases")
    if not isinstance(releases, dict):
        raise ValueError("project listing: missing 'releases' mapping")
    result = []
    for raw_version, files in releases.items():
        try:
            version = Version(raw_version)
        except InvalidVersion:
            logger.debug("Skipping unparseable version %r", raw_version)
            continue
        if not isinstance(files, list) or not files:
            continue
        yanked = all(bool(f.get("yanked")) for f in files if isinstance(f, dict))
        requires_python = next(
            (f.get("requires_python") for f in files if isinstance(f, dict) and f.get("requires_python")),
            None,
        )
        result.append(ReleaseInfo(version, yanked, requires_python))
    result.sort(key=lambda r: r.version)
    return result


def python_compatible(requires_python: Optional[str], python_version: str) -> bool:
    """Check ``Requires-Python`` against the interpreter version."""
    if not requires_python:
        return True
    try:
        return SpecifierSet(requires_python).contains(python_version, prereleases=True)
    except InvalidSpecifier:
        logger.debug("Ignoring invalid requires_python %r", requires_python)
        return True


def _canonical(doc: Dict[str, Any]) -> bytes:
    return json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def normalize_release(data: bytes, name: PackageName, version: Version) -> bytes:
    """Reduce ``/pypi/<name>/<version>/json`` to its immutable canonical form."""
    doc = _load_json(data, f"release {name} {version}")
    info = doc.get("info") or {}
    if not isinstance(info, dict):
        raise ValueError(f"release {name} {version}: 'info' is not an object")
    reported = info.get("version")
    if reported is not None and Version(str(reported)) != version:
        raise ValueError(f"release {name} {version}: index answered for version {reported}")
    artifacts = []
    for f in doc.get("urls") or []:
        if not isinstance(f, dict) or not f.get("filename"):
            continue
        digests = f.get("digests") or {}
        artifacts.append({
            "filename": f["filename"],
            "url": f.get("url", ""),
            "sha256": digests.get("sha256"),
            "packagetype": f.get("packagetype", "bdist_wheel"),
        })
    artifacts.sort(key=lambda a: a["filename"])
    return _canonical({
        "schema": DOCUMENT_SCHEMA,
        "name": str(name),
        "version": str(version),
        "requires_dist": list(info.get("requires_dist") or []),
        "requires_python": info.get("requires_python") or None,
        "artifacts": artifacts,
    })


def document_from_wheel(data: bytes, source: SourceDescriptor) -> bytes:
    """Build the canonical document for a wheel fetched from a direct reference."""
    filename = posixpath.basename(source.location.split("#", 1)[0].split("?", 1)[0])
    if not filename.endswith(".whl"):
        raise ValueError(f"{source.location}: only wheel files are supported as direct references")
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            meta_name = next(
                (n for n in zf.namelist() if n.count("/") == 1 and n.endswith(".dist-info/METADATA")),
                None,
            )
            if meta_name is None:
                raise ValueError(f"{filename}: no .dist-info/METADATA")
            message = BytesParser().parsebytes(zf.read(meta_name))
    except zipfile.BadZipFile as exc:
        raise ValueError(f"{filename}: not a valid wheel ({exc})") from exc
    if not message.get("Name") or not message.get("Version"):
        raise ValueError(f"{filename}: METADATA lacks Name or Version")
    return _canonical({
        "schema": DOCUMENT_SCHEMA,
        "name": str(PackageName(message["Name"])),
        "version": str(Version(message["Version"])),
        "requires_dist": list(message.get_all("Requires-Dist") or []),
        "requires_python": message.get("Requires-Python") or None,
        "artifacts": [{
            "filename": filename,
            "url": source.location,
            "sha256": hashlib.sha256(data).hexdigest(),
            "packagetype": "bdist_wheel",
        }],
    })


def metadata_from_document(data: bytes, source: SourceDescriptor) -> PackageMetadata:
    """Parse a canonical document back into PackageMetadata."""
    doc = _load_json(data, "metadata document")
    base, extras = split_requires_dist(doc.get("requires_dist") or [])
    return PackageMetadata(
        name=PackageName(doc["name"]),
        version=Version(doc["version"]),
        requirements=base,
        source=source,
        extras=extras,
        artifacts=tuple(
            Artifact(a["filename"], a.get("url", ""), a.get("sha256"), a.get("packagetype", "bdist_wheel"))
            for a in doc.get("artifacts") or []
        ),
        requires_python=doc.get("requires_python"),
    )
