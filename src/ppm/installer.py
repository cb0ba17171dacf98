"""Install orchestration: resolve, download, store, link and lock."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .common.logging_utils import Timer
from .constants import Constants
from .download.cache import CacheMetadata
from .download.downloader import (
    BatchOptimizer,
    DownloadRequest,
    DownloadResult,
    ParallelDownloader,
    cache_key_for,
)
from .errors import PpmError
from .linking.manager import LinkManager
from .lockfile import LockFile, compute_project_hash
from .models.dependency import Dependency, Package, ResolvedDependency
from .models.ecosystem import Ecosystem
from .registry import default_adapters
from .registry.base import RegistryAdapter
from .resolution.engine import DependencyResolver, check_version_conflicts
from .store.manager import GlobalStoreManager

logger = logging.getLogger(__name__)


@dataclass
class InstallConfig:
    """Options for one install run."""

    include_dev: bool = False
    skip_verification: bool = False
    force_update: bool = False
    abort_on_resolution_failure: bool = False
    check_conflicts: bool = False
    max_concurrent: int = field(default_factory=lambda: Constants.MAX_CONCURRENT_DOWNLOADS)
    download_timeout: int = field(default_factory=lambda: Constants.REQUEST_TIMEOUT)


@dataclass
class InstallResult:
    """Summary of an install run; failures are keyed by package."""

    installed: List[ResolvedDependency] = field(default_factory=list)
    skipped: List[ResolvedDependency] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    links_created: int = 0
    download_size: int = 0
    duration_ms: float = 0.0
    lock_file: Optional[str] = None

    def success_rate(self) -> float:
        total = len(self.installed) + len(self.skipped) + len(self.failed)
        if total == 0:
            return 1.0
        return (len(self.installed) + len(self.skipped)) / total

    def is_success(self) -> bool:
        return not self.failed


class PackageInstaller:
    """Wires the resolver, downloader, global store and link manager together.

    Args:
        store: Global store manager; initialized on first install.
        adapters: Registry adapter per ecosystem; the default npm and PyPI
            adapters backed by the store's metadata cache when omitted.
        config: Default install options.
        link_manager: Link manager; a default one when omitted.
    """

    def __init__(
        self,
        store: Optional[GlobalStoreManager] = None,
        adapters: Optional[Mapping[Ecosystem, RegistryAdapter]] = None,
        config: Optional[InstallConfig] = None,
        link_manager: Optional[LinkManager] = None,
    ):
        self.store = store or GlobalStoreManager()
        self.config = config or InstallConfig()
        self.resolver = DependencyResolver(adapters or default_adapters(metadata_cache=self.store))
        self.link_manager = link_manager or LinkManager()
        self._store_ready = False

    def _downloader(self, config: InstallConfig) -> ParallelDownloader:
        return ParallelDownloader(
            max_concurrent=config.max_concurrent,
            timeout=config.download_timeout,
            verify=not config.skip_verification,
        )

    def install(
        self,
        dependencies: Sequence[Dependency],
        project_root: str,
        manifest: Optional[Mapping[str, Any]] = None,
        config: Optional[InstallConfig] = None,
    ) -> InstallResult:
        """Install dependencies into project_root and write its lock file.

        Args:
            dependencies: Root dependencies of the project.
            project_root: Directory receiving the links and ppm.lock.
            manifest: Parsed manifest used for the lock file's project hash.
                The root dependency list is hashed when omitted.
            config: Overrides the installer's default options.

        Returns:
            InstallResult: What was installed, skipped and failed.

        Raises:
            VersionConflict: When check_conflicts is set and a package resolved
                to two versions.
            StoreError: If the global store cannot be initialized.
            LockFileError: If ppm.lock cannot be written.
        """
        config = config or self.config
        result = InstallResult()
        if not self._store_ready:
            self.store.initialize()
            self._store_ready = True

        with Timer() as t:
            resolution = self.resolver.resolve(
                list(dependencies),
                dataclasses.replace(self.resolver.config, include_dev_dependencies=config.include_dev),
            )
            for failure in resolution.failed:
                result.failed[failure.dependency.full_identifier()] = failure.error
            if resolution.failed and config.abort_on_resolution_failure:
                logger.error("Aborting install: %d dependencies failed to resolve", resolution.failed_count())
                result.duration_ms = t.duration_ms()
                return result
            if config.check_conflicts:
                check_version_conflicts(resolution.resolved)

            to_fetch: List[ResolvedDependency] = []
            for dep in BatchOptimizer.prioritize(resolution.resolved):
                if not config.force_update and self.store.has_package(dep.hash):
                    result.skipped.append(dep)
                else:
                    to_fetch.append(dep)

            fetched = self._download(to_fetch, config, result)
            for dep, data in fetched:
                try:
                    self.store.store_package(Package.from_resolved(dep, len(data)), data)
                except PpmError as exc:
                    result.failed[dep.identifier()] = str(exc)
                    continue
                result.installed.append(dep)
                result.download_size += len(data)

            available = result.skipped + result.installed
            for ecosystem, deps in BatchOptimizer.group_by_ecosystem(available).items():
                structure = self.link_manager.link(project_root, ecosystem, deps, self.store.root_path)
                result.links_created += structure.link_count()
                for name, error in structure.errors.items():
                    result.failed[f"{name}@{ecosystem.value}"] = error

            result.lock_file = self._write_lock_file(project_root, dependencies, manifest, available)

        result.duration_ms = t.duration_ms()
        logger.info(
            "Install finished: %d installed, %d skipped, %d failed, %d bytes downloaded in %.0f ms",
            len(result.installed),
            len(result.skipped),
            len(result.failed),
            result.download_size,
            result.duration_ms,
        )
        return result

    def _download(
        self, deps: List[ResolvedDependency], config: InstallConfig, result: InstallResult
    ) -> List[Tuple[ResolvedDependency, bytes]]:
        """Fetch archives for deps; returns (dep, bytes) pairs for the successes."""
        requests: List[DownloadRequest] = []
        by_key: Dict[str, ResolvedDependency] = {}
        for dep in deps:
            try:
                url = self.resolver.get_release(dep).download_url
            except PpmError as exc:
                result.failed[dep.identifier()] = str(exc)
                continue
            if not url:
                result.failed[dep.identifier()] = "No download URL published"
                continue
            key = cache_key_for(dep)
            by_key[key] = dep
            requests.append(DownloadRequest(
                key,
                url,
                CacheMetadata(
                    name=dep.name,
                    version=dep.version,
                    ecosystem=dep.ecosystem.registry_key,
                    integrity=dep.integrity,
                ),
            ))
        if not requests:
            return []

        downloader = self._downloader(config)

        async def run() -> List[DownloadResult]:
            async with downloader:
                return await downloader.download_parallel(requests)

        fetched = []
        for outcome in asyncio.run(run()):
            dep = by_key[outcome.key]
            if outcome.ok:
                fetched.append((dep, outcome.data))
            else:
                result.failed[dep.identifier()] = str(outcome.error)
        return fetched

    def _write_lock_file(
        self,
        project_root: str,
        dependencies: Sequence[Dependency],
        manifest: Optional[Mapping[str, Any]],
        deps: List[ResolvedDependency],
    ) -> str:
        if manifest is None:
            manifest = {"dependencies": sorted(d.full_identifier() for d in dependencies)}
        lock = LockFile.new(compute_project_hash(manifest))
        for dep in deps:
            lock.add_dependency(dep)
        path = os.path.join(project_root, Constants.LOCK_FILE_NAME)
        lock.save(path)
        return path
