"""Tests for the version constraint algebra."""
import pytest
from packaging.specifiers import SpecifierSet
from packaging.version import Version

from versioning.constraint import ConstraintKind, VersionConstraint


def V(text):
    return Version(text)


class TestParse:
    """Specifier strings map onto interval + exclusions."""

    def test_empty_is_any(self):
        c = VersionConstraint.parse("")
        assert c.kind is ConstraintKind.ANY
        assert c.contains(V("0.0.1"))
        assert str(c) == ""

    def test_none_is_any(self):
        assert VersionConstraint.parse(None).is_any

    def test_range(self):
        c = VersionConstraint.parse(">=1.0,<2.0")
        assert c.kind is ConstraintKind.RANGE
        assert c.contains(V("1.0"))
        assert c.contains(V("1.9.9"))
        assert not c.contains(V("2.0"))
        assert not c.contains(V("0.9"))

    def test_exact_ignores_trailing_zeros(self):
        c = VersionConstraint.parse("==1.0")
        assert c.kind is ConstraintKind.EXACT
        assert c.contains(V("1.0.0"))
        assert not c.contains(V("1.0.1"))

    def test_exclusion(self):
        c = VersionConstraint.parse("!=1.5")
        assert c.kind is ConstraintKind.EXCLUSION
        assert not c.contains(V("1.5"))
        assert c.contains(V("1.4"))

    def test_wildcard(self):
        c = VersionConstraint.parse("==1.2.*")
        assert c.contains(V("1.2"))
        assert c.contains(V("1.2.7"))
        assert not c.contains(V("1.3"))
        assert not c.contains(V("1.1.9"))

    def test_compatible_release(self):
        c = VersionConstraint.parse("~=1.4.2")
        assert c.contains(V("1.4.2"))
        assert c.contains(V("1.4.9"))
        assert not c.contains(V("1.5"))
        assert not c.contains(V("1.4.1"))

    def test_str_is_stable(self):
        assert str(VersionConstraint.parse(">=1.0, <2.0")) == str(VersionConstraint.parse("<2.0,>=1.0"))

    def test_contradiction_is_empty_not_error(self):
        c = VersionConstraint.parse("==1.0,==2.0")
        assert c.is_empty()

    def test_malformed_raises_value_error(self):
        with pytest.raises(ValueError):
            VersionConstraint.parse(">>>1")


class TestIntersect:
    """Intersection returns None when nothing can satisfy both sides."""

    def test_disjoint_ranges(self):
        assert VersionConstraint.parse(">=2").intersect(VersionConstraint.parse("<2")) is None

    def test_touching_inclusive_bounds(self):
        c = VersionConstraint.parse(">=2").intersect(VersionConstraint.parse("<=2"))
        assert c is not None
        assert c.contains(V("2"))
        assert not c.contains(V("2.0.1"))

    def test_exclusion_inside_range_keeps_rest(self):
        c = VersionConstraint.parse(">=1,<3").intersect(VersionConstraint.parse("!=2.0"))
        assert c is not None
        assert not c.contains(V("2.0"))
        assert c.contains(V("2.1"))

    def test_exclusions_covering_whole_range_are_empty(self):
        c = VersionConstraint.parse(">=1.0,<=2.0").intersect(VersionConstraint.parse("!=1.*,!=2.*"))
        assert c is None

    def test_point_excluded(self):
        assert VersionConstraint.parse("==1.5").intersect(VersionConstraint.parse("!=1.5")) is None

    def test_diamond_overlap(self):
        c = VersionConstraint.parse(">=1.0").intersect(VersionConstraint.parse("<=1.2"))
        assert [str(v) for v in map(V, ["1.0", "1.1", "1.2", "1.3"]) if c.contains(v)] == ["1.0", "1.1", "1.2"]

    def test_commutative_string_form(self):
        a, b = VersionConstraint.parse(">=1"), VersionConstraint.parse("!=1.5,<2")
        assert str(a.intersect(b)) == str(b.intersect(a))



class TestPrereleases:
    """Naming a pre-release in a clause marks the constraint as asking for them."""

    def test_flag_off_by_default(self):
        c = VersionConstraint.parse(">=1.0")
        assert c.contains(V("2.0b1"))
        assert not c.prereleases

    def test_flag_set_when_named(self):
        assert VersionConstraint.parse(">=2.0b1").prereleases
        assert VersionConstraint.parse("==3.0rc1").kind is ConstraintKind.EXACT

    def test_flag_survives_intersection(self):
        c = VersionConstraint.parse("<3").intersect(VersionConstraint.parse(">=2.0b1"))
        assert c.prereleases


SAMPLE_VERSIONS = [
    "0.9", "1.0.dev0", "1.0a1", "1.0rc1", "1.0", "1.0+local.7", "1.0.post1", "1.0.post1+abc",
    "1.0.post2.dev1", "1.0.1", "1.5", "1.5+ubuntu1", "2.0.dev3", "2.0rc1", "2.0", "2.0.post1",
    "2.1", "3.0", "1!0.5",
]


class TestAgreesWithPackaging:
    """Membership matches ``SpecifierSet.contains`` with pre-releases allowed."""

    @pytest.mark.parametrize("spec", [
        ">1.0", ">1.0.post1", ">1.0rc1", "<2.0", "<2.0rc1", "<=1.0", ">=1.0",
        "==1.0", "==1.0+local.7", "!=1.0", "==1.*", "!=2.*", "~=1.0", "~=1.0.1",
        ">1.0,<2.0", ">=1.0,!=1.5,<3", "==1.5",
    ])
    def test_membership(self, spec):
        ours = VersionConstraint.parse(spec)
        theirs = SpecifierSet(spec)
        for text in SAMPLE_VERSIONS:
            version = V(text)
            assert ours.contains(version) == theirs.contains(version, prereleases=True), (spec, text)

    def test_exclusive_upper_drops_its_prereleases(self):
        assert VersionConstraint.parse(">=2.0rc1").intersect(VersionConstraint.parse("<2.0")) is None

    def test_exclusive_lower_drops_post_and_local(self):
        c = VersionConstraint.parse(">1.0")
        assert not c.contains(V("1.0.post1"))
        assert not c.contains(V("1.0+local"))
        assert c.contains(V("1.0.1"))

    def test_exact_admits_local_versions(self):
        c = VersionConstraint.parse("==1.0")
        assert c.contains(V("1.0+local"))
        assert VersionConstraint.parse("!=1.0").intersect(VersionConstraint.parse("==1.0+local")) is None


class TestContradictions:
    def test_every_clause_is_kept(self):
        a = VersionConstraint.parse("==1,==2,>=3")
        b = VersionConstraint.parse("==1,==2,>=4")
        assert a.is_empty() and b.is_empty()
        assert str(a) == "==1,==2,>=3"
        assert str(a) != str(b)
