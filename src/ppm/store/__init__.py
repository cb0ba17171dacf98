"""Content-addressed global package store."""

from .global_store import GlobalStore
from .manager import CleanupResult, GlobalStoreManager, StoreConfig, StoreStats
from .models import CachedPackageInfo, PackageEntry, RegistryCache

__all__ = [
    "CachedPackageInfo",
    "CleanupResult",
    "GlobalStore",
    "GlobalStoreManager",
    "PackageEntry",
    "RegistryCache",
    "StoreConfig",
    "StoreStats",
]
