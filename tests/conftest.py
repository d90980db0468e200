"""Shared fixtures: a fake PyPI JSON index served through the Transport protocol."""
import hashlib
import io
import json
import zipfile

import pytest

from common.errors import TransportError
from constants import Constants
from metadata.provider import MetadataProvider
from pkgcache.store import PackageCache
from versioning.models import InterpreterDescriptor, PackageName

INDEX = "https://index.test/pypi/"
FILES = "https://files.test/"


def make_wheel(name, version, requires=(), requires_python=None, modules=None):
    """Build a minimal pure-python wheel in memory."""
    dist = str(PackageName(name)).replace("-", "_")
    info = f"{dist}-{version}.dist-info"
    lines = ["Metadata-Version: 2.1", f"Name: {name}", f"Version: {version}"]
    if requires_python:
        lines.append(f"Requires-Python: {requires_python}")
    lines.extend(f"Requires-Dist: {r}" for r in requires)
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for path, body in (modules or {f"{dist}/__init__.py": f"VERSION = {version!r}\n"}).items():
            zf.writestr(path, body)
        zf.writestr(f"{info}/METADATA", "\n".join(lines) + "\n")
        zf.writestr(f"{info}/WHEEL", "Wheel-Version: 1.0\nRoot-Is-Purelib: true\nTag: py3-none-any\n")
    return buf.getvalue()


class FakeIndex:
    """In-memory package index answering the PyPI JSON API URLs.

    Also serves artifact downloads and arbitrary blobs (direct references).
    Every fetched identifier is recorded in ``calls``.
    """

    def __init__(self):
        self.projects = {}
        self.blobs = {}
        self.calls = []
        self.failing = set()

    def add(self, name, version, requires=(), requires_python=None, yanked=False, files=None):
        key = str(PackageName(name))
        dist = key.replace("-", "_")
        if files is None:
            filename = f"{dist}-{version}-py3-none-any.whl"
            files = {filename: make_wheel(name, version, requires, requires_python)}
        entries = []
        for filename, data in sorted(files.items()):
            url = FILES + filename
            self.blobs[url] = data
            entries.append({
                "filename": filename,
                "url": url,
                "digests": {"sha256": hashlib.sha256(data).hexdigest(), "md5": "ignored"},
                "packagetype": "bdist_wheel" if filename.endswith(".whl") else "sdist",
                "requires_python": requires_python,
                "yanked": yanked,
                "downloads": -1,
            })
        self.projects.setdefault(key, {})[version] = {
            "info": {
                "name": name,
                "version": version,
                "requires_dist": list(requires) or None,
                "requires_python": requires_python,
                "yanked": yanked,
                "summary": "changes over time and is not cached",
            },
            "urls": entries,
        }
        return self

    def _document(self, identifier):
        rest = identifier[len(INDEX):]
        parts = rest.strip("/").split("/")
        if parts[-1] != "json" or parts[0] not in self.projects:
            return None
        releases = self.projects[parts[0]]
        if len(parts) == 2:
            latest = sorted(releases)[-1]
            return {
                "info": releases[latest]["info"],
                "releases": {v: doc["urls"] for v, doc in releases.items()},
            }
        if len(parts) == 3 and parts[1] in releases:
            return releases[parts[1]]
        return None

    def fetch(self, identifier, timeout):
        self.calls.append(identifier)
        if identifier in self.failing:
            raise TransportError(identifier, "simulated outage")
        if identifier in self.blobs:
            return self.blobs[identifier]
        if identifier.startswith(INDEX):
            doc = self._document(identifier)
            if doc is not None:
                return json.dumps(doc).encode("utf-8")
        raise TransportError(identifier, "HTTP 404")

    def fetch_many(self, identifiers, timeout):
        results = {}
        for identifier in identifiers:
            try:
                results[identifier] = self.fetch(identifier, timeout)
            except TransportError as exc:
                results[identifier] = exc
        return results


@pytest.fixture
def interpreter():
    return InterpreterDescriptor(version="3.11.4", implementation="cpython", abi="cp311",
                                 platform="linux", machine="x86_64")


@pytest.fixture
def index():
    return FakeIndex()


@pytest.fixture
def cache(tmp_path):
    return PackageCache(str(tmp_path / "cache"), lock_timeout=5)


@pytest.fixture
def provider(cache, index, interpreter):
    return MetadataProvider(cache, index, interpreter, index_url=INDEX, timeout=5)


@pytest.fixture(autouse=True)
def restore_constants():
    """Undo Constants mutations made by config and CLI tests."""
    saved = {k: v for k, v in vars(Constants).items() if k.isupper()}
    yield
    for key, value in saved.items():
        setattr(Constants, key, value)
