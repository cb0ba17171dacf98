"""Disk-backed global store: package directories plus metadata.json."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.logging_utils import extra_context, is_debug_enabled, Timer
from ..constants import Constants
from ..errors import StoreError
from ..models.dependency import Package
from ..models.ecosystem import Ecosystem
from .archive import unpack_package
from .global_store import GlobalStore
from .models import CachedPackageInfo

logger = logging.getLogger(__name__)


@dataclass
class StoreConfig:
    """Global store behaviour."""

    auto_create: bool = True
    max_cache_size: int = field(default_factory=lambda: Constants.MAX_STORE_SIZE)
    cache_ttl: int = field(default_factory=lambda: Constants.REGISTRY_CACHE_TTL_SEC)
    auto_cleanup: bool = True
    cleanup_threshold_days: int = field(default_factory=lambda: Constants.CLEANUP_THRESHOLD_DAYS)


@dataclass
class StoreStats:
    total_packages: int
    total_size: int
    packages_by_ecosystem: Dict[str, int]
    cache_stats: Dict[str, int]
    orphaned_packages: int


@dataclass
class CleanupResult:
    packages_removed: int = 0
    bytes_freed: int = 0
    removed_hashes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _dir_size(path: str) -> int:
    total = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            try:
                total += os.path.getsize(os.path.join(dirpath, filename))
            except OSError:
                continue
    return total


class GlobalStoreManager:
    """Owns the store directory and keeps metadata.json in sync with the in-memory store.

    Args:
        root_path: Store root; defaults to GlobalStore.default_location().
        config: Store behaviour; defaults to StoreConfig().
    """

    def __init__(self, root_path: Optional[str] = None, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self.root_path = os.path.abspath(root_path or GlobalStore.default_location())
        self.store = GlobalStore(self.root_path, cache_ttl=self.config.cache_ttl)

    @property
    def packages_dir(self) -> str:
        return os.path.join(self.root_path, "packages")

    @property
    def cache_dir(self) -> str:
        return os.path.join(self.root_path, "cache")

    @property
    def metadata_path(self) -> str:
        return os.path.join(self.root_path, Constants.STORE_METADATA_FILE)

    def initialize(self) -> None:
        """Create the directory layout, merge persisted metadata and save it back.

        Raises:
            StoreError: If the store is missing and auto_create is off, or the
                metadata file is unreadable.
        """
        if not os.path.isdir(self.root_path) and not self.config.auto_create:
            raise StoreError(f"Global store not found at {self.root_path}")
        try:
            os.makedirs(self.packages_dir, exist_ok=True)
            os.makedirs(self.cache_dir, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot create global store at {self.root_path}: {exc}") from exc

        added = self.store.merge_dict(self.load_metadata())
        if self.config.auto_cleanup:
            self.store.drop_expired_caches()
        self.save_metadata()
        self.store.validate()
        logger.info("Global store ready at %s (%d packages, %d loaded)",
                    self.root_path, self.store.package_count(), added)

    def load_metadata(self) -> Dict[str, Any]:
        if not os.path.isfile(self.metadata_path):
            return {}
        try:
            with open(self.metadata_path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Cannot read store metadata {self.metadata_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"Store metadata {self.metadata_path} is not an object")
        return data

    def save_metadata(self) -> None:
        """Write metadata.json via a temp file and atomic rename."""
        snapshot = self.store.to_dict()
        try:
            os.makedirs(self.root_path, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".metadata-", suffix=".json", dir=self.root_path)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(snapshot, fh, indent=2, sort_keys=True)
            os.replace(tmp_path, self.metadata_path)
        except OSError as exc:
            raise StoreError(f"Cannot write store metadata {self.metadata_path}: {exc}") from exc

    def get_package_path(self, content_hash: str) -> Optional[str]:
        return self.store.get_package_path(content_hash)

    def has_package(self, content_hash: str) -> bool:
        path = self.store.get_package_path(content_hash)
        return path is not None and os.path.isdir(path)

    def store_package(self, package: Package, content: Optional[bytes] = None) -> str:
        """Add a reference to a package, writing its content on first store.

        Args:
            package: Package metadata; ``hash`` is the store key.
            content: Archive bytes to unpack when the directory does not exist yet.

        Returns:
            str: The content hash.

        Raises:
            StoreError: If the content cannot be written; the reference is rolled back.
        """
        if content is not None and not package.size:
            package = dataclasses.replace(package, size=len(content))
        content_hash = self.store.store_package(package)
        path = self.store.get_package_path(content_hash)

        if content is not None and path is not None and not os.path.isdir(path):
            try:
                self._write_content(path, package, content)
            except (OSError, StoreError) as exc:
                self.store.remove_package(content_hash)
                raise StoreError(f"Failed to store {package.name}@{package.version}: {exc}") from exc

        self.save_metadata()
        return content_hash

    def _write_content(self, path: str, package: Package, content: bytes) -> None:
        """Unpack into a sibling temp directory, then rename into place."""
        parent = os.path.dirname(path)
        os.makedirs(parent, exist_ok=True)
        tmp_dir = tempfile.mkdtemp(prefix=".tmp-", dir=parent)
        filename = f"{package.name.replace('/', '-')}-{package.version}{package.ecosystem.package_extension}"
        with Timer() as t:
            try:
                count = unpack_package(tmp_dir, content, package.ecosystem, filename)
                os.replace(tmp_dir, path)
            except OSError:
                if os.path.isdir(path):
                    # Another writer finished the same content first
                    shutil.rmtree(tmp_dir, ignore_errors=True)
                    return
                shutil.rmtree(tmp_dir, ignore_errors=True)
                raise
            except StoreError:
                shutil.rmtree(tmp_dir, ignore_errors=True)
                raise
        if is_debug_enabled(logger):
            logger.debug(
                "Package content written",
                extra=extra_context(
                    event="store_write",
                    component="global_store",
                    action="store_package",
                    outcome="success",
                    target=f"{package.name}@{package.version}",
                    files=count,
                    duration_ms=t.duration_ms(),
                ),
            )

    def get_package(self, content_hash: str):
        return self.store.get_package(content_hash)

    def remove_package(self, content_hash: str) -> bool:
        """Drop one reference; delete the directory once the last one is gone.

        Raises:
            StoreError: If the hash is unknown or the directory cannot be deleted.
        """
        path = self.store.get_package_path(content_hash)
        removed = self.store.remove_package(content_hash)
        if removed and path and os.path.isdir(path):
            try:
                shutil.rmtree(path)
            except OSError as exc:
                self.save_metadata()
                raise StoreError(f"Removed {content_hash} from metadata but could not delete {path}: {exc}") from exc
        self.save_metadata()
        return removed

    def cleanup_orphaned(self) -> CleanupResult:
        """Sweep entries whose reference count is zero."""
        return self._sweep(self.store.orphaned_entries())

    def cleanup_stale(self, days: Optional[int] = None) -> CleanupResult:
        """Sweep orphaned entries that have not been accessed for ``days`` days."""
        days = self.config.cleanup_threshold_days if days is None else days
        cutoff = time.time() - days * 86400
        return self._sweep([e for e in self.store.orphaned_entries() if e.last_accessed < cutoff])

    def _sweep(self, entries) -> CleanupResult:
        result = CleanupResult()
        for entry in entries:
            # The snapshot may be stale; only entries still unreferenced are deleted
            removed = self.store.remove_if_orphaned(entry.hash)
            if removed is None:
                continue
            path = os.path.join(self.root_path, *removed.store_path.split("/"))
            size = _dir_size(path) if os.path.isdir(path) else removed.size
            try:
                if os.path.isdir(path):
                    shutil.rmtree(path)
            except OSError as exc:
                result.errors.append(f"{entry.hash}: {exc}")
                continue
            result.packages_removed += 1
            result.bytes_freed += size
            result.removed_hashes.append(entry.hash)
        if result.packages_removed:
            self.save_metadata()
            logger.info("Removed %d orphaned packages (%d bytes)", result.packages_removed, result.bytes_freed)
        return result

    def cleanup_cache(self) -> List[Ecosystem]:
        """Drop expired registry metadata caches."""
        expired = self.store.drop_expired_caches()
        if expired:
            self.save_metadata()
        return expired

    def verify_integrity(self) -> List[str]:
        """Return hashes whose package directory is missing on disk."""
        missing = []
        for entry in self.store.entries():
            path = os.path.join(self.root_path, *entry.store_path.split("/"))
            if not os.path.isdir(path):
                missing.append(entry.hash)
        return missing

    def get_stats(self) -> StoreStats:
        entries = self.store.entries()
        by_ecosystem: Dict[str, int] = {}
        for entry in entries:
            by_ecosystem[entry.ecosystem.value] = by_ecosystem.get(entry.ecosystem.value, 0) + 1
        return StoreStats(
            total_packages=len(entries),
            total_size=sum(e.size for e in entries),
            packages_by_ecosystem=by_ecosystem,
            cache_stats=self.store.cache_stats(),
            orphaned_packages=sum(1 for e in entries if e.is_orphaned()),
        )

    def get_disk_usage(self) -> int:
        return _dir_size(self.packages_dir) if os.path.isdir(self.packages_dir) else 0

    # Registry metadata cache hooks used by the registry adapters

    def cache_package_info(self, ecosystem: Ecosystem, info: CachedPackageInfo) -> None:
        self.store.cache_package_info(ecosystem, info)

    def get_cached_package(self, ecosystem: Ecosystem, name: str) -> Optional[CachedPackageInfo]:
        return self.store.get_cached_package(ecosystem, name)
