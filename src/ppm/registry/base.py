"""Registry adapter interface shared by the npm and PyPI clients."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..common.http_client import TRANSPORT_FAILURE, is_timeout
from ..common.integrity import is_valid_sha256, sha256_hex
from ..common.logging_utils import extra_context, is_debug_enabled
from ..errors import (
    InvalidPackageName,
    RateLimited,
    RegistryPackageNotFound,
    RegistryParseError,
    RegistryRequestFailed,
    RegistryTimeout,
    RegistryVersionNotFound,
)
from ..models.dependency import Dependency
from ..models.ecosystem import Ecosystem
from ..store.models import CachedPackageInfo
from ..versioning import parse_spec, resolver_for

logger = logging.getLogger(__name__)


@dataclass
class ReleaseInfo:
    """Metadata for one published version of a package.

    ``dependencies`` is None when the registry needs a separate request to
    describe this version; RegistryAdapter.get_release() fills it in.
    """

    name: str
    version: str
    ecosystem: Ecosystem
    dependencies: Optional[List[Dependency]] = None
    download_url: Optional[str] = None
    integrity: Optional[str] = None
    sha256: Optional[str] = None

    def content_hash(self) -> str:
        """SHA-256 identity for the store.

        Uses the registry's declared SHA-256 when there is one, otherwise a
        digest of the integrity string so identical archives still share a
        hash across names and versions.
        """
        if self.sha256 and is_valid_sha256(self.sha256.lower()):
            return self.sha256.lower()
        if self.integrity:
            return sha256_hex(self.integrity.encode("utf-8"))
        return sha256_hex(f"{self.ecosystem.value}:{self.name}@{self.version}".encode("utf-8"))


@dataclass
class PackageInfo:
    """Registry view of a package: all versions and per-version releases."""

    name: str
    ecosystem: Ecosystem
    versions: List[str]
    latest: str
    releases: Dict[str, ReleaseInfo] = field(default_factory=dict)
    dist_tags: Dict[str, str] = field(default_factory=dict)


class RegistryAdapter(ABC):
    """Version resolution and metadata fetch service for one ecosystem.

    Args:
        base_url: Registry base URL; defaults to the ecosystem's registry.
        metadata_cache: Optional object exposing get_cached_package() and
            cache_package_info() (the global store) used for version lists.
    """

    def __init__(self, base_url: Optional[str] = None, metadata_cache: Any = None):
        self.base_url = (base_url or self.ecosystem.registry_url).rstrip("/")
        self.metadata_cache = metadata_cache

    @property
    @abstractmethod
    def ecosystem(self) -> Ecosystem:
        """Ecosystem served by this adapter."""

    @abstractmethod
    def _fetch_package_info(self, name: str) -> PackageInfo:
        """Fetch and map registry metadata for a package."""

    def get_package_info(self, name: str) -> PackageInfo:
        """Return versions, latest tag and per-version releases for a package.

        Raises:
            InvalidPackageName: If the name breaks the ecosystem's naming rules.
            RegistryError: For not-found, rate limiting, timeouts and bad payloads.
        """
        if not self.ecosystem.validate_package_name(name):
            raise InvalidPackageName(name)
        info = self._fetch_package_info(name)
        if self.metadata_cache is not None and info.latest in info.versions:
            self.metadata_cache.cache_package_info(
                self.ecosystem,
                CachedPackageInfo(name=name, versions=list(info.versions), latest_version=info.latest),
            )
        return info

    def get_release(self, name: str, version: str) -> ReleaseInfo:
        """Return release metadata, including dependencies, for one version."""
        info = self.get_package_info(name)
        release = info.releases.get(version)
        if release is None:
            raise RegistryVersionNotFound(name, version)
        return release

    def get_dependencies(self, name: str, version: str) -> List[Dependency]:
        """Declared runtime dependencies of one version."""
        return list(self.get_release(name, version).dependencies or [])

    def get_versions(self, name: str, prefer_cached: bool = True) -> Tuple[List[str], Dict[str, str]]:
        """Return (versions, tags), served from the metadata cache when fresh."""
        if prefer_cached and self.metadata_cache is not None:
            cached = self.metadata_cache.get_cached_package(self.ecosystem, name)
            if cached is not None:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Registry metadata cache hit",
                        extra=extra_context(
                            event="cache_hit",
                            component="registry",
                            action="get_versions",
                            target=name,
                            ecosystem=self.ecosystem.value,
                        ),
                    )
                return list(cached.versions), {"latest": cached.latest_version}
        info = self.get_package_info(name)
        return list(info.versions), dict(info.dist_tags)

    def resolve_version(self, name: str, spec: str, prefer_cached: bool = True) -> str:
        """Resolve a version spec to one exact, published version.

        Raises:
            RegistryVersionNotFound: If no published version satisfies spec.
        """
        tag = parse_spec(spec).tag
        if tag is not None and tag != "latest":
            # The metadata cache only remembers the latest tag
            prefer_cached = False
        versions, tags = self.get_versions(name, prefer_cached=prefer_cached)
        resolved, count, error = resolver_for(self.ecosystem).pick(spec, versions, tags)
        if resolved is None:
            if is_debug_enabled(logger):
                logger.debug(
                    "No version satisfies spec",
                    extra=extra_context(
                        event="resolve",
                        component="registry",
                        action="resolve_version",
                        outcome="no_match",
                        target=f"{name}@{spec}",
                        candidate_count=count,
                        reason=error,
                    ),
                )
            raise RegistryVersionNotFound(name, spec)
        return resolved

    def package_exists(self, name: str) -> bool:
        try:
            self.get_package_info(name)
        except (RegistryPackageNotFound, InvalidPackageName):
            return False
        return True

    def _check_response(self, name: str, status: int, data: Any) -> Dict[str, Any]:
        """Map a get_json() result onto the adapter error vocabulary."""
        if status == 200 and isinstance(data, dict):
            return data
        if status == 404:
            raise RegistryPackageNotFound(name)
        if status == 429:
            raise RateLimited(f"{self.ecosystem.registry_key} registry rate limited request for '{name}'")
        if status == TRANSPORT_FAILURE:
            reason = data if isinstance(data, str) else ""
            if is_timeout(status, reason):
                raise RegistryTimeout(f"Request for '{name}' timed out")
            raise RegistryRequestFailed(reason or f"Request for '{name}' failed")
        if status == 200:
            raise RegistryParseError(f"Unparseable registry response for '{name}'")
        raise RegistryRequestFailed(f"HTTP {status} fetching '{name}'")
