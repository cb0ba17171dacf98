"""Tests for the breadth-first dependency resolver."""

import pytest

from ppm.errors import PackageNotFound, UnsupportedEcosystem, ValidationError, VersionConflict
from ppm.models.dependency import Dependency
from ppm.models.ecosystem import Ecosystem
from ppm.resolution import (
    DependencyResolver,
    ResolutionConfig,
    check_version_conflicts,
    find_version_conflicts,
)
from ppm.store.global_store import GlobalStore

JS = Ecosystem.JAVASCRIPT
PY = Ecosystem.PYTHON


@pytest.fixture
def npm(registry_factory):
    return registry_factory(JS, {
        "react": {"17.0.2": [], "18.0.0": [], "18.2.0": [], "19.0.0-rc.1": []},
        "express": {"4.18.2": [("body-parser", "^1.20.0"), ("cookie", "~0.5.0")]},
        "body-parser": {"1.20.1": [("bytes", "^3.1.0")], "1.20.2": [("bytes", "3.1.2")]},
        "bytes": {"3.1.2": []},
        "cookie": {"0.5.0": []},
        "cycle-a": {"1.0.0": [("cycle-b", "^1.0.0")]},
        "cycle-b": {"1.0.0": [("cycle-a", "^1.0.0")]},
        "left": {"1.0.0": [("shared", "^1.0.0")]},
        "right": {"1.0.0": [("shared", "^2.0.0")]},
        "shared": {"1.5.0": [], "2.1.0": []},
        "jest": {"29.7.0": []},
        "unsigned": {"1.0.0": []},
    }, missing_integrity=("unsigned",), dist_tags={"react": {"legacy": "17.0.2", "canary": "19.0.0-rc.1"}})


@pytest.fixture
def pypi(registry_factory):
    return registry_factory(PY, {
        "requests": {"2.30.0": [], "2.31.0": [("urllib3", ">=1.21.1,<3"), ("idna", ">=2.5,<4")]},
        "urllib3": {"1.26.18": [], "2.1.0": []},
        "idna": {"3.6": []},
    })


@pytest.fixture
def resolver(npm, pypi):
    return DependencyResolver({JS: npm, PY: pypi})


def _names(result):
    return sorted(f"{d.name}@{d.version}" for d in result.resolved)


class TestResolve:
    """Breadth-first traversal and result contents."""

    def test_single_root(self, resolver):
        """A caret range resolves to the highest stable match."""
        result = resolver.resolve([Dependency("react", "^18.0.0", JS, False)])

        assert [(d.name, d.version, d.ecosystem) for d in result.resolved] == [("react", "18.2.0", JS)]
        assert result.failed == []
        assert result.is_successful()
        assert result.total_processed == 1

    def test_missing_package_is_recorded(self, resolver):
        """A package missing from the registry fails without aborting the run."""
        result = resolver.resolve([Dependency("nonexistent-package-xyz", "^1.0.0", JS, False)])

        assert result.resolved == []
        assert result.failed[0].dependency.name == "nonexistent-package-xyz"
        assert "not found" in result.failed[0].error

    def test_transitive_dependencies(self, resolver):
        """Children are resolved one level deeper, breadth first."""
        result = resolver.resolve([Dependency("express", "^4.0.0", JS)])

        assert _names(result) == ["body-parser@1.20.2", "bytes@3.1.2", "cookie@0.5.0", "express@4.18.2"]
        assert result.max_depth_reached == 2
        assert [d.name for d in result.resolved][:1] == ["express"]

    def test_resolved_entries_are_valid(self, resolver):
        result = resolver.resolve([Dependency("express", "^4.0.0", JS)])
        for dep in result.resolved:
            dep.validate()
            assert dep.store_path.endswith(dep.hash)

    def test_mixed_ecosystems(self, resolver):
        """Each ecosystem's dependencies go to its own registry."""
        result = resolver.resolve([
            Dependency("react", "^18.0.0", JS),
            Dependency("requests", ">=2.0", PY),
        ])

        assert _names(result) == ["idna@3.6", "react@18.2.0", "requests@2.31.0", "urllib3@2.1.0"]
        assert {d.name for d in result.dependencies_by_ecosystem(PY)} == {"requests", "urllib3", "idna"}

    def test_cycle_terminates(self, resolver):
        """A dependency cycle resolves each package once and stops."""
        result = resolver.resolve([Dependency("cycle-a", "^1.0.0", JS)])

        assert _names(result) == ["cycle-a@1.0.0", "cycle-b@1.0.0"]
        assert result.failed == []
        assert result.revisits == []

    def test_cycle_revisits_are_reported_when_asked(self, resolver):
        """With record_revisits the edge back into the cycle is surfaced."""
        result = resolver.resolve(
            [Dependency("cycle-a", "^1.0.0", JS)], ResolutionConfig(record_revisits=True)
        )

        assert _names(result) == ["cycle-a@1.0.0", "cycle-b@1.0.0"]
        assert [(r.dependency.name, r.depth, r.parent) for r in result.revisits] == [
            ("cycle-a", 2, "javascript:cycle-b@^1.0.0")
        ]

    def test_same_release_is_emitted_once(self, resolver):
        """Two specs pinning the same version yield one resolved entry."""
        result = resolver.resolve([
            Dependency("bytes", "^3.1.0", JS),
            Dependency("bytes", "3.1.2", JS),
        ])

        assert _names(result) == ["bytes@3.1.2"]
        assert result.total_processed == 2

    def test_max_depth(self, resolver):
        """Nodes past max_depth fail with the depth error."""
        result = resolver.resolve([Dependency("express", "^4.0.0", JS)], ResolutionConfig(max_depth=0))

        assert _names(result) == ["express@4.18.2"]
        assert {f.dependency.name for f in result.failed} == {"body-parser", "cookie"}
        assert all(f.error == "Maximum resolution depth (0) exceeded" for f in result.failed)
        assert all(f.depth == 1 and f.parent == "javascript:express@^4.0.0" for f in result.failed)

    def test_negative_max_depth_is_rejected(self, resolver):
        with pytest.raises(ValidationError):
            resolver.resolve([], ResolutionConfig(max_depth=-1))

    def test_dev_dependencies(self, resolver):
        """Dev-only roots are skipped unless include_dev_dependencies is set."""
        roots = [Dependency.development("jest", "^29.0.0", JS)]

        assert resolver.resolve(roots).resolved == []
        included = resolver.resolve(roots, ResolutionConfig(include_dev_dependencies=True))
        assert _names(included) == ["jest@29.7.0"]

    def test_constraints_override_specs(self, resolver):
        """A constraint pins a package wherever it appears in the graph."""
        config = ResolutionConfig(ecosystem_constraints={"shared": "1.5.0"})
        result = resolver.resolve(
            [Dependency("left", "^1.0.0", JS), Dependency("right", "^1.0.0", JS)], config
        )

        assert _names(result) == ["left@1.0.0", "right@1.0.0", "shared@1.5.0"]

    def test_missing_integrity_fails(self, resolver):
        result = resolver.resolve([Dependency("unsigned", "^1.0.0", JS)])

        assert result.resolved == []
        assert "integrity" in result.failed[0].error

    def test_no_matching_version(self, resolver):
        result = resolver.resolve([Dependency("react", "^99.0.0", JS)])
        assert "Invalid version specification '^99.0.0'" in result.failed[0].error

    def test_invalid_spec(self, resolver):
        """A malformed spec is a per-dependency failure."""
        result = resolver.resolve([Dependency("react", "banana", JS)])
        assert result.failed and result.resolved == []

    def test_unsupported_ecosystem(self, npm):
        resolver = DependencyResolver({JS: npm})
        result = resolver.resolve([Dependency("requests", "*", PY)])
        assert "Unsupported ecosystem" in result.failed[0].error

    @pytest.mark.parametrize(
        "spec, expected", [("legacy", "17.0.2"), ("", "18.2.0"), ("x", "18.2.0"), ("latest", "18.2.0")]
    )
    def test_dist_tags_and_wildcards(self, resolver, spec, expected):
        """npm tags and empty or "x" specs resolve through the registry's dist-tags."""
        result = resolver.resolve([Dependency("react", spec, JS)])
        assert _names(result) == [f"react@{expected}"]

    def test_tag_pointing_at_prerelease_fails(self, resolver):
        result = resolver.resolve([Dependency("react", "canary", JS)])
        assert result.resolved == []
        assert result.failed[0].dependency.version_spec == "canary"

    def test_tags_bypass_metadata_cache(self, registry_factory, tmp_path):
        store = GlobalStore(str(tmp_path))
        npm = registry_factory(
            JS, {"react": {"17.0.2": [], "18.2.0": []}}, metadata_cache=store,
            dist_tags={"react": {"legacy": "17.0.2"}},
        )
        resolver = DependencyResolver({JS: npm})
        resolver.resolve([Dependency("react", "^18.0.0", JS)])

        result = resolver.resolve([Dependency("react", "legacy", JS)])

        assert _names(result) == ["react@17.0.2"]

    def test_version_cache(self, resolver, npm):
        """Resolved specs are memoized across runs unless prefer_cached is off."""
        roots = [Dependency("react", "^18.0.0", JS)]
        resolver.resolve(roots)
        assert resolver.get_cache_stats()["version_cache_entries"] == 1

        resolver.resolve(roots, ResolutionConfig(prefer_cached=False))
        assert resolver.get_cache_stats()["version_cache_entries"] == 1
        resolver.clear_cache()
        assert resolver.get_cache_stats() == {"version_cache_entries": 0, "release_cache_entries": 0}

    def test_metadata_cache_is_filled(self, registry_factory, tmp_path):
        """Registries backed by the global store record the versions they serve."""
        store = GlobalStore(str(tmp_path))
        npm = registry_factory(JS, {"react": {"18.2.0": []}}, metadata_cache=store)
        DependencyResolver({JS: npm}).resolve([Dependency("react", "^18.0.0", JS)])

        cached = store.get_cached_package(JS, "react")
        assert cached.versions == ["18.2.0"]

    def test_resolve_ecosystem_dependencies(self, resolver):
        result = resolver.resolve_ecosystem_dependencies(
            [Dependency("react", "^18.0.0", JS), Dependency("idna", "*", PY)], PY
        )
        assert _names(result) == ["idna@3.6"]


class TestQueries:
    """Single-package helpers."""

    def test_find_latest_compatible(self, resolver):
        assert resolver.find_latest_compatible(Dependency("react", "^17.0.0", JS)) == "17.0.2"

    def test_get_available_versions(self, resolver):
        assert "19.0.0-rc.1" in resolver.get_available_versions("react", JS)

    def test_get_available_versions_missing(self, resolver):
        with pytest.raises(PackageNotFound, match="not found in javascript registry"):
            resolver.get_available_versions("nope", JS)

    def test_package_exists(self, resolver):
        assert resolver.package_exists("react", JS)
        assert not resolver.package_exists("nope", JS)

    def test_unsupported_ecosystem_raises(self, npm):
        with pytest.raises(UnsupportedEcosystem):
            DependencyResolver({JS: npm}).package_exists("requests", PY)


class TestConflicts:
    """The opt-in version conflict pass."""

    def test_conflicting_versions(self, resolver):
        """Two specs resolving the same package differently are reported."""
        result = resolver.resolve([Dependency("left", "^1.0.0", JS), Dependency("right", "^1.0.0", JS)])

        assert _names(result) == ["left@1.0.0", "right@1.0.0", "shared@1.5.0", "shared@2.1.0"]
        conflicts = find_version_conflicts(result.resolved)
        assert len(conflicts) == 1
        assert conflicts[0].version1 == "1.5.0" and conflicts[0].version2 == "2.1.0"
        with pytest.raises(VersionConflict, match="Version conflict for package"):
            check_version_conflicts(result.resolved)

    def test_no_conflicts(self, resolver):
        result = resolver.resolve([Dependency("express", "^4.0.0", JS)])
        check_version_conflicts(result.resolved)


class TestDependencyTree:
    def test_tree_follows_edges(self, resolver):
        """The tree mirrors parent/child edges with resolved versions."""
        tree = resolver.create_dependency_tree([Dependency("express", "^4.0.0", JS)])

        root = tree.roots[0]
        assert root.resolved_version == "4.18.2"
        assert [c.dependency.name for c in root.children] == ["body-parser", "cookie"]
        body_parser = root.children[0]
        assert body_parser.depth == 1
        assert [(c.dependency.name, c.resolved_version) for c in body_parser.children] == [("bytes", "3.1.2")]
        assert tree.total_dependencies == 4
        assert tree.max_depth == 2

    def test_tree_with_cycle_is_finite(self, resolver):
        tree = resolver.create_dependency_tree([Dependency("cycle-a", "^1.0.0", JS)])
        cycle_b = tree.roots[0].children[0]
        assert cycle_b.dependency.name == "cycle-b"
        assert cycle_b.children[0].children == []
