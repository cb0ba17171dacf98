"""Shared fixtures: in-memory registries and sample archives."""

import io
import tarfile
import zipfile
from typing import Dict, List, Optional, Tuple

import pytest

from ppm.common.http_client import clear_http_cache
from ppm.common.integrity import sha256_hex, sri_from_sha256_hex
from ppm.errors import RegistryPackageNotFound
from ppm.models.dependency import Dependency
from ppm.models.ecosystem import Ecosystem
from ppm.registry.base import PackageInfo, RegistryAdapter, ReleaseInfo
from ppm.versioning import resolver_for

# name -> version -> [(dependency name, spec)]
Catalog = Dict[str, Dict[str, List[Tuple[str, str]]]]


class InMemoryRegistry(RegistryAdapter):
    """Registry adapter serving a fixed catalog without network access."""

    def __init__(
        self,
        ecosystem: Ecosystem,
        catalog: Catalog,
        artifacts: Optional[Dict[Tuple[str, str], bytes]] = None,
        missing_integrity: Tuple[str, ...] = (),
        metadata_cache=None,
        dist_tags: Optional[Dict[str, Dict[str, str]]] = None,
    ):
        self._ecosystem = ecosystem
        self.catalog = catalog
        self.artifacts = artifacts or {}
        self.missing_integrity = set(missing_integrity)
        self.dist_tags = dist_tags or {}
        self.fetches: List[str] = []
        super().__init__(base_url="https://registry.invalid", metadata_cache=metadata_cache)

    @property
    def ecosystem(self) -> Ecosystem:
        return self._ecosystem

    def _fetch_package_info(self, name: str) -> PackageInfo:
        self.fetches.append(name)
        versions = self.catalog.get(name)
        if versions is None:
            raise RegistryPackageNotFound(name)

        releases = {}
        for version, deps in versions.items():
            payload = self.artifacts.get((name, version), f"{name}@{version}".encode("utf-8"))
            digest = sha256_hex(payload)
            integrity = None if name in self.missing_integrity else sri_from_sha256_hex(digest)
            releases[version] = ReleaseInfo(
                name=name,
                version=version,
                ecosystem=self._ecosystem,
                dependencies=[Dependency(d, spec, self._ecosystem) for d, spec in deps],
                download_url=f"https://registry.invalid/{name}/-/{name}-{version}{self._ecosystem.package_extension}",
                integrity=integrity,
                sha256=digest if integrity else None,
            )
        latest, _, _ = resolver_for(self._ecosystem).pick("*", list(versions))
        return PackageInfo(
            name=name,
            ecosystem=self._ecosystem,
            versions=list(versions),
            latest=latest or "",
            releases=releases,
            dist_tags={**({"latest": latest} if latest else {}), **self.dist_tags.get(name, {})},
        )


def make_tarball(files: Dict[str, bytes], top: str = "package") -> bytes:
    """Build an npm-style .tgz with every file under a single top directory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(f"{top}/{name}" if top else name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_wheel(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture(autouse=True)
def _fresh_http_cache():
    """Keep cached HTTP responses from leaking between tests."""
    clear_http_cache()
    yield
    clear_http_cache()


@pytest.fixture
def registry_factory():
    """Return the InMemoryRegistry class for tests to instantiate."""
    return InMemoryRegistry


@pytest.fixture
def tarball_factory():
    return make_tarball


@pytest.fixture
def wheel_factory():
    return make_wheel
