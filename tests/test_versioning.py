"""Tests for spec parsing and the semver / PEP 440 resolvers."""

import pytest

from ppm.models.ecosystem import Ecosystem
from ppm.versioning import (
    Pep440Resolver,
    ResolutionMode,
    SemverResolver,
    parse_spec,
    resolver_for,
)

NPM_VERSIONS = ["1.0.0", "1.2.0", "1.2.7", "1.3.0", "1.4.0-beta.1", "2.0.0", "2.1.0-rc.1"]
PYPI_VERSIONS = ["1.0", "2.0", "2.5.1", "2.6rc1", "3.0", "3.1.dev0"]


class TestParseSpec:
    """Classification of raw spec strings."""

    @pytest.mark.parametrize("raw", ["", "*", "x", "latest"])
    def test_latest(self, raw):
        spec = parse_spec(raw)
        assert spec.mode is ResolutionMode.LATEST
        assert spec.tag == "latest"

    def test_dist_tag(self):
        spec = parse_spec("next")
        assert spec.mode is ResolutionMode.LATEST
        assert spec.tag == "next"

    def test_exact_and_range(self):
        assert parse_spec("1.2.3").mode is ResolutionMode.EXACT
        assert parse_spec("^1.2.3").mode is ResolutionMode.RANGE
        assert parse_spec("1.0.0-beta.1").mode is ResolutionMode.RANGE


class TestResolverDispatch:
    def test_resolver_per_ecosystem(self):
        """Each ecosystem maps onto the resolver for its version scheme."""
        assert isinstance(resolver_for(Ecosystem.JAVASCRIPT), SemverResolver)
        assert isinstance(resolver_for(Ecosystem.PYTHON), Pep440Resolver)


class TestSemverResolver:
    """npm range semantics."""

    @pytest.fixture
    def resolver(self):
        return SemverResolver()

    @pytest.mark.parametrize(
        "spec,expected",
        [
            ("^1.2.0", "1.3.0"),
            ("~1.2.0", "1.2.7"),
            (">=1.0.0 <1.3.0", "1.2.7"),
            ("1.2.0 - 1.2.9", "1.2.7"),
            ("1.x", "1.3.0"),
            ("1.2", "1.2.7"),
            ("^1.0.0 || ^2.0.0", "2.0.0"),
        ],
    )
    def test_ranges_pick_highest_stable(self, resolver, spec, expected):
        """Ranges resolve to the highest matching stable version."""
        version, count, error = resolver.pick(spec, NPM_VERSIONS)
        assert version == expected
        assert count == len(NPM_VERSIONS)
        assert error is None

    def test_exact(self, resolver):
        assert resolver.pick("1.2.0", NPM_VERSIONS)[0] == "1.2.0"
        assert resolver.pick("=1.2.0", NPM_VERSIONS)[0] == "1.2.0"

    def test_exact_missing(self, resolver):
        version, _, error = resolver.pick("1.2.9", NPM_VERSIONS)
        assert version is None
        assert "not found" in error

    def test_latest_skips_prerelease(self, resolver):
        """Pre-releases are never chosen, even when they are the newest."""
        assert resolver.pick("*", NPM_VERSIONS)[0] == "2.0.0"

    def test_latest_follows_dist_tag(self, resolver):
        assert resolver.pick("latest", NPM_VERSIONS, {"latest": "1.3.0"})[0] == "1.3.0"

    def test_tag_pointing_at_prerelease_is_rejected(self, resolver):
        version, _, error = resolver.pick("next", NPM_VERSIONS, {"next": "2.1.0-rc.1"})
        assert version is None
        assert "next" in error

    def test_no_match(self, resolver):
        version, _, error = resolver.pick("^5.0.0", NPM_VERSIONS)
        assert version is None
        assert "No versions match" in error

    def test_matches(self, resolver):
        assert resolver.matches("^1.0.0", "1.3.0")
        assert not resolver.matches("^1.0.0", "2.0.0")


class TestPep440Resolver:
    """PEP 440 specifier semantics."""

    @pytest.fixture
    def resolver(self):
        return Pep440Resolver()

    @pytest.mark.parametrize(
        "spec,expected",
        [
            (">=2.0,<3", "2.5.1"),
            ("~=2.0", "2.5.1"),
            ("==2.*", "2.5.1"),
            ("<2", "1.0"),
            ("!=3.0", "2.5.1"),
        ],
    )
    def test_specifiers(self, resolver, spec, expected):
        assert resolver.pick(spec, PYPI_VERSIONS)[0] == expected

    def test_exact_uses_version_equality(self, resolver):
        """2.0.0 names the same release as the published 2.0."""
        assert resolver.pick("2.0.0", PYPI_VERSIONS)[0] == "2.0"

    def test_latest_skips_pre_and_dev(self, resolver):
        assert resolver.pick("*", PYPI_VERSIONS)[0] == "3.0"

    def test_invalid_specifier(self, resolver):
        version, _, error = resolver.pick(">>2", PYPI_VERSIONS)
        assert version is None
        assert "Invalid PEP 440 specifier" in error

    def test_empty_candidates(self, resolver):
        assert resolver.pick("*", []) == (None, 0, "No versions available")
