"""Global store records: package entries and registry metadata caches."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.integrity import is_valid_sha256, sharded_store_path
from ..errors import ValidationError
from ..models.dependency import Package
from ..models.ecosystem import Ecosystem


@dataclass
class PackageEntry:
    """One content-addressed row of the global store."""

    hash: str
    store_path: str
    size: int
    stored_at: float
    last_accessed: float
    reference_count: int
    ecosystem: Ecosystem
    name: str
    version: str

    @classmethod
    def from_package(cls, package: Package) -> "PackageEntry":
        now = time.time()
        return cls(
            hash=package.hash,
            store_path=sharded_store_path(package.hash),
            size=package.size,
            stored_at=now,
            last_accessed=now,
            reference_count=1,
            ecosystem=package.ecosystem,
            name=package.name,
            version=package.version,
        )

    def touch(self) -> None:
        self.last_accessed = time.time()

    def is_orphaned(self) -> bool:
        return self.reference_count <= 0

    def validate(self) -> None:
        if not is_valid_sha256(self.hash):
            raise ValidationError(f"Invalid SHA-256 hash in store entry: {self.hash}")
        if not self.name or not self.version or not self.store_path:
            raise ValidationError(f"Incomplete store entry for hash {self.hash}")
        if self.reference_count < 0:
            raise ValidationError(f"Negative reference count for hash {self.hash}")
        if self.store_path != sharded_store_path(self.hash):
            raise ValidationError(f"Store path '{self.store_path}' does not belong to hash {self.hash}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "store_path": self.store_path,
            "size": self.size,
            "stored_at": self.stored_at,
            "last_accessed": self.last_accessed,
            "reference_count": self.reference_count,
            "ecosystem": self.ecosystem.value,
            "name": self.name,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageEntry":
        """Rebuild an entry from metadata.json.

        Raises:
            ValidationError: If the entry is malformed, including a store_path
                that is not the sharded path of its hash.
        """
        entry = cls(
            hash=data["hash"],
            store_path=data["store_path"],
            size=int(data.get("size", 0)),
            stored_at=float(data.get("stored_at", 0.0)),
            last_accessed=float(data.get("last_accessed", 0.0)),
            reference_count=int(data.get("reference_count", 0)),
            ecosystem=Ecosystem.parse(data["ecosystem"]),
            name=data["name"],
            version=data["version"],
        )
        entry.validate()
        return entry


@dataclass
class CachedPackageInfo:
    """Registry metadata snapshot for one package."""

    name: str
    versions: List[str]
    latest_version: str
    cached_at: float = field(default_factory=time.time)

    def has_version(self, version: str) -> bool:
        return version in self.versions

    def validate(self) -> None:
        if self.latest_version not in self.versions:
            raise ValidationError(
                f"Cached latest version '{self.latest_version}' of '{self.name}' is not a known version"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "versions": list(self.versions),
            "latest_version": self.latest_version,
            "cached_at": self.cached_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedPackageInfo":
        return cls(
            name=data["name"],
            versions=list(data.get("versions", [])),
            latest_version=data.get("latest_version", ""),
            cached_at=float(data.get("cached_at", 0.0)),
        )


@dataclass
class RegistryCache:
    """Per-ecosystem registry metadata cache with a TTL."""

    ecosystem: Ecosystem
    cache_ttl: int
    packages: Dict[str, CachedPackageInfo] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.cache_ttl <= 0:
            raise ValidationError("Registry cache TTL must be positive")

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now > self.last_updated + self.cache_ttl

    def update_package(self, info: CachedPackageInfo) -> None:
        info.validate()
        self.packages[info.name] = info
        self.last_updated = time.time()

    def get_package(self, name: str, now: Optional[float] = None) -> Optional[CachedPackageInfo]:
        """Return a fresh cached entry; entries older than the TTL are ignored."""
        info = self.packages.get(name)
        if info is None:
            return None
        now = time.time() if now is None else now
        if now > info.cached_at + self.cache_ttl:
            return None
        return info

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ecosystem": self.ecosystem.value,
            "cache_ttl": self.cache_ttl,
            "last_updated": self.last_updated,
            "packages": {name: info.to_dict() for name, info in self.packages.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryCache":
        return cls(
            ecosystem=Ecosystem.parse(data["ecosystem"]),
            cache_ttl=int(data.get("cache_ttl", 3600)),
            packages={
                name: CachedPackageInfo.from_dict(info)
                for name, info in (data.get("packages") or {}).items()
            },
            last_updated=float(data.get("last_updated", 0.0)),
        )
