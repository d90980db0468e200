"""Tests for package identity models and requirement parsing."""
import pytest
from packaging.version import Version

from pkgcache import CacheKey
from versioning.models import (
    Artifact,
    InterpreterDescriptor,
    PackageName,
    SourceDescriptor,
    SourceKind,
    parse_version,
)
from versioning.parser import (
    canonical_requirement,
    load_requirements_file,
    parse_requirement,
    parse_requirements,
    split_requires_dist,
)


class TestPackageName:
    """PEP 503 normalization drives equality, hashing and ordering."""

    def test_normalized_equality(self):
        assert PackageName("Flask_RESTful") == PackageName("flask-restful")
        assert PackageName("zope.interface") == "Zope-Interface"

    def test_hash_matches_normalized(self):
        assert len({PackageName("A_b"), PackageName("a.B"), PackageName("a-b")}) == 1

    def test_display_keeps_spelling(self):
        name = PackageName("Django")
        assert name.display == "Django"
        assert str(name) == "django"

    def test_ordering(self):
        assert sorted([PackageName("b"), PackageName("A")]) == [PackageName("a"), PackageName("b")]

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            PackageName("  ")


class TestSourceDescriptor:
    def test_registry_adds_trailing_slash(self):
        assert SourceDescriptor.registry("https://x/pypi").location == "https://x/pypi/"

    def test_direct_kinds(self):
        assert SourceDescriptor.direct("https://h/a.whl").kind is SourceKind.URL
        assert SourceDescriptor.direct("file:///tmp/a.whl") == SourceDescriptor(SourceKind.PATH, "/tmp/a.whl")
        assert SourceDescriptor.direct("./wheels/a.whl").kind is SourceKind.PATH

    def test_dict_round_trip(self):
        src = SourceDescriptor.direct("https://h/a.whl")
        assert SourceDescriptor.from_dict(src.to_dict()) == src


class TestInterpreterDescriptor:
    def test_key_is_stable(self):
        interp = InterpreterDescriptor("3.11.4", "cpython", "cp311", "linux", "x86_64")
        assert interp.key() == "cpython-3.11.4-cp311-linux-x86_64"

    def test_marker_environment(self):
        env = InterpreterDescriptor("3.12.1", platform="win32", machine="amd64").marker_environment()
        assert env["python_version"] == "3.12"
        assert env["sys_platform"] == "win32"
        assert env["os_name"] == "nt"
        assert env["platform_system"] == "Windows"


class TestParseRequirement:
    """PEP 508 strings become PackageRequirements."""

    def test_constraint_and_extras(self):
        req = parse_requirement("Requests[Socks,security] >=2.0,<3")
        assert req.name == "requests"
        assert req.extras == frozenset({"socks", "security"})
        assert req.constraint.contains(Version("2.31"))
        assert not req.constraint.contains(Version("3.0"))

    def test_marker(self, interpreter):
        req = parse_requirement('tomli>=1.1; python_version < "3.11"')
        assert not req.applies_to(interpreter)
        other = InterpreterDescriptor("3.10.2")
        assert req.applies_to(other)

    def test_extra_marker_needs_extra(self, interpreter):
        req = parse_requirement('PySocks!=1.5.7; extra == "socks"')
        assert not req.applies_to(interpreter)
        assert req.applies_to(interpreter, "socks")

    def test_direct_url(self):
        req = parse_requirement("pkg @ https://files.test/pkg-1.0-py3-none-any.whl")
        assert req.url == "https://files.test/pkg-1.0-py3-none-any.whl"
        assert req.source.kind is SourceKind.URL

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_requirement("not a requirement !!")

    def test_parse_many_skips_comments(self):
        reqs = parse_requirements(["a>=1", "", "# comment", "  b  "])
        assert [str(r.name) for r in reqs] == ["a", "b"]

    def test_canonical_form(self):
        a = canonical_requirement(parse_requirement("Foo_Bar[X] >= 1.0 , < 2"))
        b = canonical_requirement(parse_requirement("foo-bar[x]<2,>=1.0"))
        assert a == b == "foo-bar[x]<2,>=1.0"

    def test_parse_version(self):
        assert parse_version(" 1.0.post1 ") == Version("1.0.post1")
        with pytest.raises(ValueError):
            parse_version("banana")


class TestSplitRequiresDist:
    def test_base_and_extras(self):
        base, extras = split_requires_dist([
            "charset-normalizer<4,>=2",
            'PySocks!=1.5.7,>=1.5.6; extra == "socks"',
            'chardet<6,>=3.0.2; extra == "use-chardet-on-py3"',
        ])
        assert [str(r.name) for r in base] == ["charset-normalizer"]
        assert sorted(extras) == ["socks", "use-chardet-on-py3"]
        assert str(extras["socks"][0].name) == "pysocks"


class TestArtifact:
    def test_format_tag_and_digest(self):
        wheel = Artifact("pkg-1.0-py3-none-any.whl", "u", "ab" * 32)
        assert wheel.format_tag == "wheel:py3-none-any"
        assert wheel.digest == "sha256:" + "ab" * 32
        assert Artifact("pkg-1.0.tar.gz", "u", None, "sdist").format_tag == "sdist:tar.gz"

    def test_sdist_archives_get_distinct_tags(self):
        tar = Artifact("pkg-1.0.tar.gz", "u", None, "sdist")
        zipped = Artifact("pkg-1.0.zip", "u", None, "sdist")
        assert zipped.format_tag == "sdist:zip"
        assert tar.format_tag != zipped.format_tag
        src = SourceDescriptor.registry("https://index.test/pypi/")
        assert (CacheKey.for_artifact("pkg", "1.0", src, tar.format_tag)
                != CacheKey.for_artifact("pkg", "1.0", src, zipped.format_tag))


class TestRequirementsFile:
    def test_load(self, tmp_path):
        path = tmp_path / "requirements.txt"
        path.write_text("# deps\nrequests>=2.0\nflask[async]==3.0.0\n", encoding="utf-8")
        reqs = load_requirements_file(str(path))
        assert [str(r.name) for r in reqs] == ["requests", "flask"]
        assert reqs[1].extras == frozenset({"async"})
