"""Materialize a resolved graph into a target directory.

Wheels are fetched through the package cache, checked against the digest
recorded at resolution time and unpacked into ``<target>/site-packages``.
What was installed is recorded in ``<target>/lockwright-installed.json`` so a
second run only touches packages whose version or source changed.
"""
from __future__ import annotations

import contextlib
import hashlib
import io
import json
import logging
import os
import posixpath
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from packaging import tags
from packaging.utils import InvalidWheelFilename, parse_wheel_filename

from constants import Constants
from common.errors import CacheIntegrityViolation, InstallError
from common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from metadata.transport import Transport
from pkgcache.keys import CacheKey
from pkgcache.store import PackageCache
from resolver.graph import ResolvedGraph, ResolvedNode
from versioning.models import Artifact, InterpreterDescriptor

logger = logging.getLogger(__name__)

SITE_PACKAGES = "site-packages"
_LIB_SCHEMES = ("purelib", "platlib")


@dataclass
class InstallReport:
    """What one install run did."""
    target: str
    installed: List[Tuple[str, str]] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    removed: List[Tuple[str, str]] = field(default_factory=list)


def _platforms(interpreter: InterpreterDescriptor) -> List[str]:
    machine = interpreter.machine
    if interpreter.platform.startswith("linux"):
        many = [f"manylinux_2_{minor}_{machine}" for minor in range(40, 16, -1)]
        legacy = [f"manylinux2014_{machine}", f"manylinux_2_12_{machine}", f"manylinux2010_{machine}",
                  f"manylinux_2_5_{machine}", f"manylinux1_{machine}"]
        return many + legacy + [f"linux_{machine}"]
    if interpreter.platform == "darwin":
        arch = "arm64" if machine in ("arm64", "aarch64") else "x86_64"
        return list(tags.mac_platforms((14, 0), arch))
    if interpreter.platform == "win32":
        return {"amd64": ["win_amd64"], "x86_64": ["win_amd64"], "arm64": ["win_arm64"]}.get(machine, ["win32"])
    return [f"{interpreter.platform}_{machine}"]


def supported_tags(interpreter: InterpreterDescriptor) -> List[tags.Tag]:
    """Wheel tags the interpreter accepts, most specific first."""
    major, minor = (int(p) for p in interpreter.version.split(".")[:2])
    platforms = _platforms(interpreter)
    result: List[tags.Tag] = []
    if interpreter.implementation == "cpython":
        abis = [interpreter.abi] if interpreter.abi else None
        result.extend(tags.cpython_tags((major, minor), abis, platforms))
        interp_tag = f"cp{major}{minor}"
    else:
        short = {"pypy": "pp"}.get(interpreter.implementation, interpreter.implementation[:2])
        interp_tag = f"{short}{major}{minor}"
        result.extend(tags.generic_tags(interp_tag, [interpreter.abi] if interpreter.abi else None, platforms))
    result.extend(tags.compatible_tags((major, minor), interp_tag, platforms))
    return list(dict.fromkeys(result))


class Installer:
    """Installs wheels for one interpreter, fetching through the cache."""

    def __init__(self, cache: PackageCache, transport: Transport, interpreter: InterpreterDescriptor,
                 timeout: Optional[float] = None):
        self.cache = cache
        self.transport = transport
        self.interpreter = interpreter
        self.timeout = float(timeout if timeout is not None else Constants.REQUEST_TIMEOUT)
        self._rank = {tag: i for i, tag in enumerate(supported_tags(interpreter))}

    def select_artifact(self, node: ResolvedNode) -> Artifact:
        """Best compatible wheel for ``node``.

        Raises:
            InstallError: If no wheel matches the interpreter.
        """
        best: Optional[Tuple[int, str, Artifact]] = None
        for artifact in node.artifacts:
            if not artifact.filename.endswith(".whl"):
                continue
            try:
                _, _, _, wheel_tags = parse_wheel_filename(artifact.filename)
            except InvalidWheelFilename:
                logger.debug("Ignoring malformed wheel name %s", artifact.filename)
                continue
            ranks = [self._rank[t] for t in wheel_tags if t in self._rank]
            if not ranks:
                continue
            candidate = (min(ranks), artifact.filename, artifact)
            if best is None or candidate[:2] < best[:2]:
                best = candidate
        if best is None:
            raise InstallError(
                f"no wheel of {node.name} {node.version} is compatible with {self.interpreter.key()}"
                " (building from source distributions is not supported)"
            )
        return best[2]

    def _key(self, node: ResolvedNode, artifact: Artifact) -> CacheKey:
        if node.source.is_direct:
            return CacheKey.for_direct(node.name, node.source)
        return CacheKey.for_artifact(node.name, node.version, node.source, artifact.format_tag)

    def fetch_artifact(self, node: ResolvedNode, artifact: Artifact) -> bytes:
        """Artifact bytes from the cache, or the transport on a miss, digest-checked.

        Raises:
            CacheIntegrityViolation: If the bytes do not match the locked digest.
            TransportError: If the download fails.
        """
        key = self._key(node, artifact)
        data = self.cache.get(key)
        from_cache = data is not None
        if data is None:
            url = node.source.location if node.source.is_direct else artifact.url
            with Timer() as timer:
                data = self.transport.fetch(url, self.timeout)
            if is_debug_enabled(logger):
                logger.debug("Downloaded artifact", extra=extra_context(
                    event="artifact_fetched", component="installer", action="fetch",
                    target=safe_url(url), size=len(data), duration_ms=timer.duration_ms()))
        if artifact.sha256:
            actual = hashlib.sha256(data).hexdigest()
            if actual != artifact.sha256:
                where = "cached" if from_cache else "downloaded"
                raise CacheIntegrityViolation(
                    str(key), f"{where} {artifact.filename} has sha256:{actual}, lock expects {artifact.digest}")
        if not from_cache:
            self.cache.put(key, data)
        return data

    def install(self, graph: ResolvedGraph, target: str) -> InstallReport:
        """Install every node of ``graph`` into ``target`` in name order.

        Packages recorded by an earlier run at the same version and source are
        skipped; packages no longer in the graph are removed.
        """
        target = os.path.abspath(target)
        site = os.path.join(target, SITE_PACKAGES)
        os.makedirs(site, exist_ok=True)
        record_path = os.path.join(target, Constants.INSTALL_RECORD_FILE)
        previous = self._read_record(record_path)
        current: Dict[str, Dict[str, Any]] = {}
        report = InstallReport(target=target)

        for name in sorted(set(previous) - {str(n.name) for n in graph}):
            self._remove_files(target, previous[name].get("files", []))
            report.removed.append((name, previous[name].get("version", "?")))

        for node in graph:
            name = str(node.name)
            entry = previous.get(name)
            if entry and entry.get("version") == str(node.version) and entry.get("source") == node.source.to_dict():
                current[name] = entry
                report.skipped.append((name, str(node.version)))
                continue
            artifact = self.select_artifact(node)
            data = self.fetch_artifact(node, artifact)
            if entry:
                self._remove_files(target, entry.get("files", []))
            files = self._unpack(data, target, site, artifact.filename)
            current[name] = {
                "version": str(node.version),
                "source": node.source.to_dict(),
                "wheel": artifact.filename,
                "files": files,
            }
            report.installed.append((name, str(node.version)))
            logger.info("Installed %s %s", name, node.version)

        self._write_record(record_path, current)
        return report

    @staticmethod
    def _read_record(path: str) -> Dict[str, Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                doc = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable install record %s: %s", path, exc)
            return {}
        packages = doc.get("packages") if isinstance(doc, dict) else None
        return packages if isinstance(packages, dict) else {}

    @staticmethod
    def _write_record(path: str, packages: Dict[str, Dict[str, Any]]) -> None:
        payload = json.dumps({"packages": packages}, sort_keys=True, indent=2) + "\n"
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise

    @staticmethod
    def _destination(member: str, target: str, site: str) -> str:
        parts = member.split("/")
        # <dist>.data/<scheme>/... goes to the scheme directory
        if len(parts) > 2 and parts[0].endswith(".data"):
            scheme, rest = parts[1], parts[2:]
            base = site if scheme in _LIB_SCHEMES else os.path.join(target, scheme)
            return os.path.join(base, *rest)
        return os.path.join(site, *parts)

    def _unpack(self, data: bytes, target: str, site: str, filename: str) -> List[str]:
        written = []
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                for info in zf.infolist():
                    member = info.filename
                    if info.is_dir():
                        continue
                    normalized = posixpath.normpath(member)
                    if normalized.startswith(("/", "../")) or normalized == ".." or ":" in normalized:
                        raise InstallError(f"{filename}: refusing to extract {member!r}")
                    dest = self._destination(normalized, target, site)
                    os.makedirs(os.path.dirname(dest), exist_ok=True)
                    with zf.open(info) as src, open(dest, "wb") as out:
                        shutil.copyfileobj(src, out)
                    written.append(os.path.relpath(dest, target))
        except zipfile.BadZipFile as exc:
            raise InstallError(f"{filename} is not a valid wheel: {exc}") from exc
        return sorted(written)

    @staticmethod
    def _remove_files(target: str, files: List[str]) -> None:
        """Delete recorded files, then any directories they leave empty."""
        parents = set()
        for rel in files:
            path = os.path.join(target, rel)
            with contextlib.suppress(FileNotFoundError):
                os.unlink(path)
            parents.add(os.path.dirname(path))
        site = os.path.join(target, SITE_PACKAGES)
        for directory in sorted(parents, key=len, reverse=True):
            while directory not in (target, site) and directory.startswith(target + os.sep):
                try:
                    os.rmdir(directory)
                except OSError:
                    break
                directory = os.path.dirname(directory)
