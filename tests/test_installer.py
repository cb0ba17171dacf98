"""End-to-end install runs against in-memory registries."""

import json
import os

import pytest

pytest.importorskip("aiohttp")

from ppm.download import ParallelDownloader
from ppm.errors import VersionConflict
from ppm.installer import InstallConfig, InstallResult, PackageInstaller
from ppm.models.dependency import Dependency
from ppm.models.ecosystem import Ecosystem
from ppm.store import GlobalStoreManager

JS = Ecosystem.JAVASCRIPT
PY = Ecosystem.PYTHON

NPM_CATALOG = {
    "left-pad": {"1.1.0": [], "1.3.0": []},
    "app": {"1.0.0": [("left-pad", "1.1.0")]},
}
PYPI_CATALOG = {"six": {"1.15.0": [], "1.16.0": []}}


class Network:
    """Serves artifact bytes by URL in place of aiohttp."""

    def __init__(self, registries):
        self.fetched = []
        self.tampered = set()
        self.payloads = {}
        for registry in registries:
            ext = registry.ecosystem.package_extension
            for name, versions in registry.catalog.items():
                for version in versions:
                    url = f"https://registry.invalid/{name}/-/{name}-{version}{ext}"
                    self.payloads[url] = registry.artifacts.get(
                        (name, version), f"{name}@{version}".encode("utf-8")
                    )

    def install(self, monkeypatch):
        network = self

        async def fetch(self, cache_key, url):
            network.fetched.append(cache_key)
            if cache_key in network.tampered:
                return b"tampered"
            return network.payloads[url]

        monkeypatch.setattr(ParallelDownloader, "_fetch", fetch)
        return self


@pytest.fixture
def artifacts(tarball_factory, wheel_factory):
    return {
        "left-pad": tarball_factory({"package.json": b'{"name": "left-pad"}', "index.js": b"module.exports = pad"}),
        "six": wheel_factory({"six.py": b"# six", "six-1.16.0.dist-info/METADATA": b"Name: six"}),
    }


@pytest.fixture
def registries(registry_factory, artifacts):
    return {
        JS: registry_factory(JS, NPM_CATALOG, artifacts={("left-pad", "1.3.0"): artifacts["left-pad"]}),
        PY: registry_factory(PY, PYPI_CATALOG, artifacts={("six", "1.16.0"): artifacts["six"]}),
    }


@pytest.fixture
def network(registries, monkeypatch):
    return Network(registries.values()).install(monkeypatch)


@pytest.fixture
def installer(tmp_path, registries):
    return PackageInstaller(store=GlobalStoreManager(str(tmp_path / "store")), adapters=registries)


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return str(root)


ROOTS = [Dependency("left-pad", "^1.0.0", JS), Dependency("six", ">=1.0", PY)]


class TestInstall:
    """Resolve, download, store, link and lock in one run."""

    def test_fresh_install(self, installer, project, network, artifacts):
        result = installer.install(ROOTS, project)

        assert result.is_success()
        assert sorted(d.identifier() for d in result.installed) == ["left-pad@1.3.0", "six@1.16.0"]
        assert result.skipped == []
        assert result.links_created == 2
        assert result.download_size == len(artifacts["left-pad"]) + len(artifacts["six"])
        assert sorted(network.fetched) == ["npm:left-pad@1.3.0", "pypi:six@1.16.0"]

        node_modules = os.path.join(project, ".ppm", "node_modules")
        assert os.path.isfile(os.path.join(node_modules, "left-pad", "index.js"))

    def test_lock_file_is_written(self, installer, project, network):
        result = installer.install(ROOTS, project)

        assert result.lock_file == os.path.join(project, "ppm.lock")
        with open(result.lock_file, encoding="utf-8") as fh:
            data = json.load(fh)
        assert [d["version"] for d in data["resolved_dependencies"]["javascript"]] == ["1.3.0"]
        assert [d["name"] for d in data["resolved_dependencies"]["python"]] == ["six"]

    def test_second_install_skips_stored_packages(self, installer, project, network):
        """Packages already in the store are neither downloaded nor stored again."""
        installer.install(ROOTS, project)

        result = installer.install(ROOTS, project)

        assert result.installed == []
        assert len(result.skipped) == 2
        assert result.links_created == 2
        assert len(network.fetched) == 2
        assert installer.store.get_stats().total_packages == 2

    def test_force_update_downloads_again(self, installer, project, network):
        installer.install(ROOTS, project)
        result = installer.install(ROOTS, project, config=InstallConfig(force_update=True))

        assert len(result.installed) == 2
        assert len(network.fetched) == 4

    def test_stores_are_shared_between_projects(self, installer, tmp_path, network):
        for name in ("one", "two"):
            (tmp_path / name).mkdir()
            installer.install(ROOTS[:1], str(tmp_path / name))

        stats = installer.store.get_stats()
        assert stats.total_packages == 1
        assert len(network.fetched) == 1


class TestInstallFailures:
    """Failures are collected per package."""

    def test_unresolvable_dependency(self, installer, project, network):
        result = installer.install(ROOTS[:1] + [Dependency("nope", "^1.0.0", JS)], project)

        assert "javascript:nope@^1.0.0" in result.failed
        assert [d.name for d in result.installed] == ["left-pad"]
        assert result.success_rate() == 0.5
        assert os.path.isfile(os.path.join(project, "ppm.lock"))

    def test_abort_on_resolution_failure(self, installer, project, network):
        config = InstallConfig(abort_on_resolution_failure=True)

        result = installer.install([Dependency("nope", "^1.0.0", JS)] + ROOTS, project, config=config)

        assert list(result.failed) == ["javascript:nope@^1.0.0"]
        assert result.lock_file is None
        assert network.fetched == []
        assert not os.path.exists(os.path.join(project, "ppm.lock"))

    def test_integrity_mismatch(self, installer, project, network):
        network.tampered.add("npm:left-pad@1.3.0")

        result = installer.install(ROOTS, project)

        assert "integrity check failed" in result.failed["left-pad@1.3.0"]
        assert [d.name for d in result.installed] == ["six"]
        assert not os.path.lexists(os.path.join(project, ".ppm", "node_modules", "left-pad"))

    def test_skip_verification(self, installer, project, network):
        network.tampered.add("npm:left-pad@1.3.0")

        result = installer.install(ROOTS[:1], project, config=InstallConfig(skip_verification=True))

        assert result.is_success()
        assert result.download_size == len(b"tampered")

    def test_conflict_check(self, installer, project, network):
        """Opting in turns two resolved versions of a package into an error."""
        roots = [Dependency("left-pad", "^1.0.0", JS), Dependency("app", "1.0.0", JS)]

        relaxed = installer.install(roots, project)
        assert sorted(d.version for d in relaxed.installed if d.name == "left-pad") == ["1.1.0", "1.3.0"]

        with pytest.raises(VersionConflict):
            installer.install(roots, project, config=InstallConfig(check_conflicts=True))


class TestInstallResult:
    def test_empty_result(self):
        result = InstallResult()
        assert result.success_rate() == 1.0
        assert result.is_success()
