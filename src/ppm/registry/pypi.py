"""PyPI registry adapter backed by the JSON API."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional

from packaging.markers import UndefinedEnvironmentName
from packaging.requirements import InvalidRequirement, Requirement

from ..common.http_client import get_json
from ..common.integrity import sri_from_sha256_hex
from ..errors import RegistryParseError, RegistryVersionNotFound
from ..models.dependency import Dependency
from ..models.ecosystem import Ecosystem
from .base import PackageInfo, RegistryAdapter, ReleaseInfo

logger = logging.getLogger(__name__)


def parse_requires_dist(requires: Optional[List[str]]) -> List[Dependency]:
    """Convert requires_dist entries into runtime dependencies.

    Requirements guarded by an extra, or by a marker that does not hold for
    the running interpreter, are skipped.
    """
    deps: List[Dependency] = []
    for line in requires or []:
        try:
            req = Requirement(line)
        except InvalidRequirement:
            logger.warning("Skipping unparseable requirement: %s", line)
            continue
        if req.marker is not None:
            try:
                if not req.marker.evaluate({"extra": ""}):
                    continue
            except UndefinedEnvironmentName:
                continue
        spec = str(req.specifier) or "*"
        deps.append(Dependency.production(Ecosystem.PYTHON.normalize_name(req.name), spec, Ecosystem.PYTHON))
    return deps


def _select_file(files: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the distribution to install: a universal wheel, any wheel, then sdist."""
    live = [f for f in files if isinstance(f, dict) and not f.get("yanked")]
    wheels = [f for f in live if f.get("packagetype") == "bdist_wheel"]
    universal = [f for f in wheels if str(f.get("filename", "")).endswith("-none-any.whl")]
    for group in (universal, wheels):
        if group:
            return group[0]
    for f in live:
        if f.get("packagetype") == "sdist":
            return f
    return None


class PyPIRegistry(RegistryAdapter):
    """Adapter for the PyPI JSON API."""

    @property
    def ecosystem(self) -> Ecosystem:
        return Ecosystem.PYTHON

    def _release(self, name: str, version: str, files: List[Dict[str, Any]],
                 dependencies: Optional[List[Dependency]] = None) -> Optional[ReleaseInfo]:
        chosen = _select_file(files)
        if chosen is None:
            return None
        digest = (chosen.get("digests") or {}).get("sha256")
        integrity = None
        if digest:
            try:
                integrity = sri_from_sha256_hex(digest)
            except ValueError:
                logger.warning("Ignoring malformed sha256 digest for %s %s", name, version)
                digest = None
        return ReleaseInfo(
            name=name,
            version=version,
            ecosystem=Ecosystem.PYTHON,
            dependencies=dependencies,
            download_url=chosen.get("url"),
            integrity=integrity,
            sha256=digest,
        )

    def _fetch_package_info(self, name: str) -> PackageInfo:
        normalized = self.ecosystem.normalize_name(name)
        status, _, data = get_json(f"{self.base_url}/pypi/{normalized}/json")
        data = self._check_response(name, status, data)

        info = data.get("info") or {}
        releases_obj = data.get("releases") or {}
        if not isinstance(info, dict) or not isinstance(releases_obj, dict):
            raise RegistryParseError(f"Malformed PyPI metadata for '{name}'")
        latest = str(info.get("version", ""))

        releases: Dict[str, ReleaseInfo] = {}
        for version, files in releases_obj.items():
            deps = parse_requires_dist(info.get("requires_dist")) if version == latest else None
            release = self._release(normalized, version, files or [], deps)
            if release is not None:
                releases[version] = release

        return PackageInfo(
            name=normalized,
            ecosystem=Ecosystem.PYTHON,
            versions=list(releases.keys()),
            latest=latest,
            releases=releases,
            dist_tags={"latest": latest} if latest in releases else {},
        )

    def get_release(self, name: str, version: str) -> ReleaseInfo:
        """Return release metadata, fetching the per-version document for dependencies."""
        release = super().get_release(name, version)
        if release.dependencies is not None:
            return release

        normalized = self.ecosystem.normalize_name(name)
        status, _, data = get_json(f"{self.base_url}/pypi/{normalized}/{version}/json")
        if status == 404:
            raise RegistryVersionNotFound(name, version)
        data = self._check_response(name, status, data)
        info = data.get("info") or {}
        return dataclasses.replace(release, dependencies=parse_requires_dist(info.get("requires_dist")))
