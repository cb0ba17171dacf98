"""In-memory model of the content-addressed, reference-counted global store."""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
from typing import Any, Dict, List, Optional

from ..constants import Constants
from ..errors import StoreError, ValidationError
from ..models.dependency import Package
from ..models.ecosystem import Ecosystem
from .models import CachedPackageInfo, PackageEntry, RegistryCache

logger = logging.getLogger(__name__)


class GlobalStore:
    """Package entries keyed by content hash plus per-ecosystem registry caches.

    All state lives behind one lock that is only held while the maps are
    read or mutated; callers do filesystem work after the call returns.
    Entries handed out are copies, the store owns the originals.

    Args:
        root_path: Store directory on disk.
        cache_ttl: TTL in seconds for newly created registry caches.
    """

    def __init__(self, root_path: str, cache_ttl: Optional[int] = None):
        self.root_path = os.path.abspath(root_path)
        self.cache_ttl = cache_ttl if cache_ttl is not None else Constants.REGISTRY_CACHE_TTL_SEC
        self._packages: Dict[str, PackageEntry] = {}
        self._registry_cache: Dict[Ecosystem, RegistryCache] = {}
        self._lock = threading.Lock()

    @staticmethod
    def default_location() -> str:
        """Store root: configured STORE_ROOT, else ~/.ppm-store."""
        if Constants.STORE_ROOT:
            return os.path.abspath(os.path.expanduser(Constants.STORE_ROOT))
        return os.path.join(os.path.expanduser("~"), Constants.STORE_DIR_NAME)

    # --- packages ---

    def store_package(self, package: Package) -> str:
        """Add a reference to package content, creating the entry on first store.

        Returns:
            str: The content hash, identical for every store of the same content.
        """
        package.validate()
        with self._lock:
            entry = self._packages.get(package.hash)
            if entry is not None:
                entry.reference_count += 1
                entry.touch()
                count = entry.reference_count
            else:
                self._packages[package.hash] = PackageEntry.from_package(package)
                count = 1
        logger.debug("Stored %s@%s as %s (refs=%d)", package.name, package.version, package.hash[:12], count)
        return package.hash

    def contains(self, content_hash: str) -> bool:
        with self._lock:
            return content_hash in self._packages

    def get_package(self, content_hash: str) -> Optional[PackageEntry]:
        with self._lock:
            entry = self._packages.get(content_hash)
            return dataclasses.replace(entry) if entry is not None else None

    def remove_package(self, content_hash: str) -> bool:
        """Drop one reference.

        Returns:
            bool: True when this call released the last reference and the
            entry was deleted, False while references remain.

        Raises:
            StoreError: If no entry exists for the hash.
        """
        with self._lock:
            entry = self._packages.get(content_hash)
            if entry is None:
                raise StoreError(f"Package with hash '{content_hash}' not found")
            if entry.reference_count > 1:
                entry.reference_count -= 1
                return False
            del self._packages[content_hash]
            return True

    def remove_if_orphaned(self, content_hash: str) -> Optional[PackageEntry]:
        """Delete the entry only if it still has no references.

        Returns:
            PackageEntry: The deleted entry, or None when it is unknown or was
            referenced again since it was last seen orphaned.
        """
        with self._lock:
            entry = self._packages.get(content_hash)
            if entry is None or not entry.is_orphaned():
                return None
            del self._packages[content_hash]
            return entry

    def cleanup_orphaned(self) -> List[str]:
        """Delete every entry whose reference count is zero and return their hashes."""
        with self._lock:
            orphaned = [h for h, e in self._packages.items() if e.is_orphaned()]
            for content_hash in orphaned:
                del self._packages[content_hash]
        return orphaned

    def orphaned_entries(self) -> List[PackageEntry]:
        with self._lock:
            return [dataclasses.replace(e) for e in self._packages.values() if e.is_orphaned()]

    def entries(self) -> List[PackageEntry]:
        with self._lock:
            return [dataclasses.replace(e) for e in self._packages.values()]

    def find_packages(self, name: str, ecosystem: Ecosystem) -> List[PackageEntry]:
        with self._lock:
            return [
                dataclasses.replace(e) for e in self._packages.values()
                if e.name == name and e.ecosystem is ecosystem
            ]

    def get_packages_by_ecosystem(self, ecosystem: Ecosystem) -> List[PackageEntry]:
        with self._lock:
            return [dataclasses.replace(e) for e in self._packages.values() if e.ecosystem is ecosystem]

    def total_size(self) -> int:
        with self._lock:
            return sum(e.size for e in self._packages.values())

    def package_count(self) -> int:
        with self._lock:
            return len(self._packages)

    def get_package_path(self, content_hash: str) -> Optional[str]:
        with self._lock:
            entry = self._packages.get(content_hash)
            store_path = entry.store_path if entry is not None else None
        if store_path is None:
            return None
        return os.path.join(self.root_path, *store_path.split("/"))

    def update_access_time(self, content_hash: str) -> bool:
        with self._lock:
            entry = self._packages.get(content_hash)
            if entry is None:
                return False
            entry.touch()
            return True

    # --- registry metadata cache ---

    def get_registry_cache(self, ecosystem: Ecosystem) -> Optional[RegistryCache]:
        with self._lock:
            cache = self._registry_cache.get(ecosystem)
            return dataclasses.replace(cache, packages=dict(cache.packages)) if cache else None

    def update_registry_cache(self, ecosystem: Ecosystem, cache: RegistryCache) -> None:
        with self._lock:
            self._registry_cache[ecosystem] = cache

    def cache_package_info(self, ecosystem: Ecosystem, info: CachedPackageInfo) -> None:
        """Record registry metadata for one package, creating the cache if needed."""
        info.validate()
        with self._lock:
            cache = self._registry_cache.get(ecosystem)
            if cache is None or cache.is_expired():
                cache = RegistryCache(ecosystem=ecosystem, cache_ttl=self.cache_ttl)
                self._registry_cache[ecosystem] = cache
            cache.update_package(info)

    def get_cached_package(self, ecosystem: Ecosystem, name: str) -> Optional[CachedPackageInfo]:
        """Return cached metadata only while both the cache and the entry are fresh."""
        with self._lock:
            cache = self._registry_cache.get(ecosystem)
            if cache is None or cache.is_expired():
                return None
            return cache.get_package(name)

    def is_cache_expired(self, ecosystem: Ecosystem) -> bool:
        with self._lock:
            cache = self._registry_cache.get(ecosystem)
            return cache is None or cache.is_expired()

    def drop_expired_caches(self) -> List[Ecosystem]:
        with self._lock:
            expired = [eco for eco, cache in self._registry_cache.items() if cache.is_expired()]
            for eco in expired:
                del self._registry_cache[eco]
        return expired

    def cache_stats(self) -> Dict[str, int]:
        with self._lock:
            return {eco.value: len(cache.packages) for eco, cache in self._registry_cache.items()}

    # --- persistence ---

    def validate(self) -> None:
        """Raise ValidationError if any entry is malformed or filed under the wrong key."""
        with self._lock:
            items = list(self._packages.items())
        for key, entry in items:
            if key != entry.hash:
                raise ValidationError(f"Store key {key} does not match entry hash {entry.hash}")
            entry.validate()

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "packages": {h: e.to_dict() for h, e in self._packages.items()},
                "registry_cache": {eco.value: c.to_dict() for eco, c in self._registry_cache.items()},
            }

    def merge_dict(self, data: Dict[str, Any]) -> int:
        """Merge persisted metadata; entries already in memory win.

        Returns:
            int: Number of package entries added.
        """
        try:
            packages = {h: PackageEntry.from_dict(e) for h, e in (data.get("packages") or {}).items()}
            caches = {}
            for eco_name, cache in (data.get("registry_cache") or {}).items():
                caches[Ecosystem.parse(eco_name)] = RegistryCache.from_dict(cache)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise StoreError(f"Corrupt store metadata: {exc}") from exc

        added = 0
        with self._lock:
            for content_hash, entry in packages.items():
                if content_hash not in self._packages:
                    self._packages[content_hash] = entry
                    added += 1
            for eco, cache in caches.items():
                self._registry_cache.setdefault(eco, cache)
        return added

    @classmethod
    def from_dict(cls, root_path: str, data: Dict[str, Any]) -> "GlobalStore":
        store = cls(root_path)
        store.merge_dict(data)
        return store
