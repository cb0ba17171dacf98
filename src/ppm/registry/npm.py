"""npm registry adapter."""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Dict, List, Optional

from ..common.http_client import get_json
from ..common.integrity import sri_from_sha1_hex
from ..errors import RegistryParseError
from ..models.dependency import Dependency
from ..models.ecosystem import Ecosystem
from .base import PackageInfo, RegistryAdapter, ReleaseInfo

logger = logging.getLogger(__name__)


def _integrity_from_dist(dist: Dict[str, Any]) -> Optional[str]:
    """Prefer the SRI integrity field; older packuments only carry a sha1 shasum."""
    integrity = dist.get("integrity")
    if isinstance(integrity, str) and integrity:
        return integrity
    shasum = dist.get("shasum")
    if isinstance(shasum, str) and shasum:
        try:
            return sri_from_sha1_hex(shasum)
        except ValueError:
            logger.warning("Ignoring malformed shasum %s", shasum)
    return None


def _dependencies(meta: Dict[str, Any]) -> List[Dependency]:
    deps = meta.get("dependencies") or {}
    if not isinstance(deps, dict):
        return []
    return [
        Dependency.production(dep_name, str(spec), Ecosystem.JAVASCRIPT)
        for dep_name, spec in deps.items()
    ]


class NpmRegistry(RegistryAdapter):
    """Adapter for the npm registry packument API."""

    @property
    def ecosystem(self) -> Ecosystem:
        return Ecosystem.JAVASCRIPT

    def package_url(self, name: str) -> str:
        # Scoped names keep the leading @ but escape the slash
        return f"{self.base_url}/{urllib.parse.quote(name, safe='@')}"

    def _fetch_package_info(self, name: str) -> PackageInfo:
        status, _, data = get_json(self.package_url(name))
        data = self._check_response(name, status, data)

        versions_obj = data.get("versions") or {}
        if not isinstance(versions_obj, dict):
            raise RegistryParseError(f"Malformed versions map for '{name}'")

        releases: Dict[str, ReleaseInfo] = {}
        for version, meta in versions_obj.items():
            if not isinstance(meta, dict):
                continue
            dist = meta.get("dist") or {}
            releases[version] = ReleaseInfo(
                name=name,
                version=version,
                ecosystem=Ecosystem.JAVASCRIPT,
                dependencies=_dependencies(meta),
                download_url=dist.get("tarball"),
                integrity=_integrity_from_dist(dist),
            )

        tags = data.get("dist-tags") or {}
        if not isinstance(tags, dict):
            tags = {}
        return PackageInfo(
            name=name,
            ecosystem=Ecosystem.JAVASCRIPT,
            versions=list(releases.keys()),
            latest=str(tags.get("latest", "")),
            releases=releases,
            dist_tags={k: str(v) for k, v in tags.items()},
        )
