"""Tests for wheel selection and installation into a target directory."""
import hashlib
import io
import json
import zipfile

import pytest
from packaging.version import Version

from common.errors import CacheIntegrityViolation, InstallError
from installer import Installer, supported_tags
from metadata.provider import MetadataProvider
from resolver import Resolver, ResolverConfig
from resolver.graph import ResolvedGraph, ResolvedNode
from versioning.models import Artifact, InterpreterDescriptor, PackageName, SourceDescriptor
from versioning.parser import parse_requirements

from conftest import FILES, INDEX, make_wheel

SRC = SourceDescriptor.registry(INDEX)


def node(name, version, *artifacts):
    return ResolvedNode(PackageName(name), Version(version), SRC, artifacts=tuple(artifacts))


def wheel(filename, data=b"", sha256=None):
    return Artifact(filename, FILES + filename, sha256 or hashlib.sha256(data).hexdigest())


@pytest.fixture
def installer(cache, index, interpreter):
    return Installer(cache, index, interpreter, timeout=5)


def _graph(provider, *roots):
    return Resolver(provider, config=ResolverConfig()).resolve(parse_requirements(roots))


class TestSupportedTags:
    def test_cpython_linux(self, interpreter):
        names = [str(t) for t in supported_tags(interpreter)]
        assert names.index("cp311-cp311-manylinux_2_17_x86_64") < names.index("py3-none-any")
        assert "cp311-abi3-manylinux2014_x86_64" in names
        assert not any(n.endswith("win_amd64") for n in names)

    def test_windows(self):
        interp = InterpreterDescriptor("3.12.0", "cpython", "cp312", "win32", "amd64")
        names = [str(t) for t in supported_tags(interp)]
        assert "cp312-cp312-win_amd64" in names
        assert "py3-none-any" in names


class TestSelectArtifact:
    def test_prefers_most_specific_wheel(self, installer):
        n = node("fast", "1.0",
                 wheel("fast-1.0-py3-none-any.whl"),
                 wheel("fast-1.0-cp311-cp311-manylinux_2_17_x86_64.manylinux2014_x86_64.whl"),
                 wheel("fast-1.0-cp311-cp311-win_amd64.whl"),
                 Artifact("fast-1.0.tar.gz", FILES + "fast-1.0.tar.gz", None, "sdist"))
        assert installer.select_artifact(n).filename.startswith("fast-1.0-cp311-cp311-manylinux")

    def test_source_only_is_an_error(self, installer):
        n = node("slow", "1.0", Artifact("slow-1.0.tar.gz", FILES + "slow-1.0.tar.gz", None, "sdist"))
        with pytest.raises(InstallError) as info:
            installer.select_artifact(n)
        assert "source distributions" in str(info.value)

    def test_incompatible_wheels(self, installer):
        n = node("win", "1.0", wheel("win-1.0-cp311-cp311-win_amd64.whl"), wheel("win-1.0-garbage.whl"))
        with pytest.raises(InstallError):
            installer.select_artifact(n)


class TestInstall:
    def test_install_then_skip(self, installer, provider, index, tmp_path):
        index.add("app", "1.0", requires=["lib"])
        index.add("lib", "1.0")
        graph = _graph(provider, "app")
        target = tmp_path / "env"

        report = installer.install(graph, str(target))

        assert report.installed == [("app", "1.0"), ("lib", "1.0")]
        assert (target / "site-packages" / "lib" / "__init__.py").read_text() == "VERSION = '1.0'\n"
        assert (target / "site-packages" / "app-1.0.dist-info" / "METADATA").exists()
        record = json.loads((target / "lockwright-installed.json").read_text())
        assert sorted(record["packages"]) == ["app", "lib"]

        again = installer.install(graph, str(target))
        assert again.installed == []
        assert again.skipped == [("app", "1.0"), ("lib", "1.0")]

    def test_upgrade_and_removal(self, installer, provider, cache, index, interpreter, tmp_path):
        index.add("app", "1.0", requires=["lib"]).add("lib", "1.0")
        target = str(tmp_path / "env")
        installer.install(_graph(provider, "app"), target)

        index.add("lib", "2.0").add("solo", "1.0")
        fresh = MetadataProvider(cache, index, interpreter, index_url=INDEX)
        report = installer.install(_graph(fresh, "lib", "solo"), target)

        assert report.removed == [("app", "1.0")]
        assert report.installed == [("lib", "2.0"), ("solo", "1.0")]
        assert not (tmp_path / "env" / "site-packages" / "app").exists()
        assert not (tmp_path / "env" / "site-packages" / "lib-1.0.dist-info" / "METADATA").exists()

    def test_second_install_uses_cache(self, installer, provider, index, tmp_path):
        index.add("lib", "1.0")
        graph = _graph(provider, "lib")
        installer.install(graph, str(tmp_path / "one"))
        downloads = index.calls.count(FILES + "lib-1.0-py3-none-any.whl")
        installer.install(graph, str(tmp_path / "two"))
        assert index.calls.count(FILES + "lib-1.0-py3-none-any.whl") == downloads == 1

    def test_data_scheme_files(self, installer, index, tmp_path):
        data = make_wheel("tool", "1.0", modules={
            "tool/__init__.py": "",
            "tool-1.0.data/scripts/tool": "#!python\n",
            "tool-1.0.data/purelib/tool_extra.py": "X = 1\n",
        })
        index.blobs[FILES + "tool-1.0-py3-none-any.whl"] = data
        graph = ResolvedGraph([node("tool", "1.0", wheel("tool-1.0-py3-none-any.whl", data))])
        installer.install(graph, str(tmp_path))
        assert (tmp_path / "scripts" / "tool").exists()
        assert (tmp_path / "site-packages" / "tool_extra.py").exists()


class TestIntegrity:
    def test_digest_mismatch(self, installer, index, tmp_path):
        data = make_wheel("lib", "1.0")
        index.blobs[FILES + "lib-1.0-py3-none-any.whl"] = data
        bad = wheel("lib-1.0-py3-none-any.whl", sha256="0" * 64)
        graph = ResolvedGraph([node("lib", "1.0", bad)])
        with pytest.raises(CacheIntegrityViolation):
            installer.install(graph, str(tmp_path))
        assert not (tmp_path / "site-packages" / "lib").exists()

    def test_path_traversal_rejected(self, installer, index, tmp_path):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("../escape.py", "boom")
        data = buf.getvalue()
        index.blobs[FILES + "evil-1.0-py3-none-any.whl"] = data
        graph = ResolvedGraph([node("evil", "1.0", wheel("evil-1.0-py3-none-any.whl", data))])
        with pytest.raises(InstallError):
            installer.install(graph, str(tmp_path / "env"))
        assert not (tmp_path / "escape.py").exists()
