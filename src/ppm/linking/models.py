"""Records describing the links a project holds into the global store."""

from __future__ import annotations

import os
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..common.integrity import is_valid_sha256
from ..constants import Constants
from ..errors import ValidationError
from ..models.dependency import ResolvedDependency
from ..models.ecosystem import Ecosystem


class SymlinkType(Enum):
    """How a link was materialized on disk."""
    DIRECTORY = "directory"
    JUNCTION = "junction"
    HARD_LINK = "hard_link"


class SymlinkStatus(Enum):
    """Outcome of linking one dependency."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"
    TARGET_NOT_FOUND = "target_not_found"
    PERMISSION_DENIED = "permission_denied"
    NOT_SUPPORTED = "not_supported"


@dataclass
class SymlinkConfig:
    """Link creation behaviour."""

    use_junctions_on_windows: bool = True
    fallback_to_hardlinks: bool = True
    create_parent_dirs: bool = True
    overwrite_existing: bool = False
    validate_targets: bool = True

    @classmethod
    def windows_optimized(cls) -> "SymlinkConfig":
        return cls(use_junctions_on_windows=True, fallback_to_hardlinks=True)

    @classmethod
    def unix_optimized(cls) -> "SymlinkConfig":
        return cls(use_junctions_on_windows=False, fallback_to_hardlinks=False)

    @classmethod
    def development(cls) -> "SymlinkConfig":
        """Relink freely and allow links to targets that do not exist yet."""
        return cls(overwrite_existing=True, validate_targets=False)

    def preferred_type(self) -> SymlinkType:
        if os.name == "nt" and self.use_junctions_on_windows:
            return SymlinkType.JUNCTION
        return SymlinkType.DIRECTORY


@dataclass
class SymlinkEntry:
    """One link from the project tree into the global store."""

    name: str
    version: str
    target_path: str
    link_path: str  # relative to the structure root, "/" separated
    link_type: SymlinkType
    target_hash: str
    exists: bool = False
    created_at: float = field(default_factory=time.time)

    def validate(self) -> None:
        if not is_valid_sha256(self.target_hash):
            raise ValidationError(f"Invalid target hash for link '{self.name}': {self.target_hash}")
        if not self.name or not self.link_path or not self.target_path:
            raise ValidationError(f"Incomplete link entry for '{self.name}'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "target_path": self.target_path,
            "link_path": self.link_path,
            "link_type": self.link_type.value,
            "target_hash": self.target_hash,
            "exists": self.exists,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SymlinkEntry":
        return cls(
            name=data["name"],
            version=data["version"],
            target_path=data["target_path"],
            link_path=data["link_path"],
            link_type=SymlinkType(data.get("link_type", SymlinkType.DIRECTORY.value)),
            target_hash=data["target_hash"],
            exists=bool(data.get("exists", False)),
            created_at=float(data.get("created_at", 0.0)),
        )


def site_packages_path(venv_root: str) -> str:
    """site-packages directory inside a virtual environment for this interpreter."""
    if os.name == "nt":
        return os.path.join(venv_root, "Lib", "site-packages")
    return os.path.join(
        venv_root, "lib", f"python{sys.version_info.major}.{sys.version_info.minor}", "site-packages"
    )


@dataclass
class SymlinkStructure:
    """All links of one ecosystem under one project root."""

    root_path: str
    ecosystem: Ecosystem
    links: Dict[str, SymlinkEntry] = field(default_factory=dict)
    version: int = 1
    created_at: float = field(default_factory=time.time)
    last_modified: float = field(default_factory=time.time)
    # per-package failures from the last link run; not persisted
    errors: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def node_modules(cls, project_root: str) -> "SymlinkStructure":
        root = os.path.join(project_root, Constants.PROJECT_DIR_NAME, Ecosystem.JAVASCRIPT.link_dir_name)
        return cls(root_path=os.path.abspath(root), ecosystem=Ecosystem.JAVASCRIPT)

    @classmethod
    def site_packages(cls, project_root: str) -> "SymlinkStructure":
        venv = os.path.join(project_root, Constants.PROJECT_DIR_NAME, Ecosystem.PYTHON.link_dir_name)
        return cls(root_path=os.path.abspath(site_packages_path(venv)), ecosystem=Ecosystem.PYTHON)

    @classmethod
    def for_ecosystem(cls, project_root: str, ecosystem: Ecosystem) -> "SymlinkStructure":
        if ecosystem is Ecosystem.JAVASCRIPT:
            return cls.node_modules(project_root)
        return cls.site_packages(project_root)

    def add_dependency_link(
        self, dep: ResolvedDependency, global_store_root: str, config: SymlinkConfig
    ) -> SymlinkStatus:
        """Record a link for dep; the filesystem is left to LinkManager.

        Returns:
            SymlinkStatus: ALREADY_EXISTS without touching the structure when
            the name is linked and overwrite_existing is off, else CREATED.
        """
        dep.validate()
        if dep.name in self.links and not config.overwrite_existing:
            return SymlinkStatus.ALREADY_EXISTS
        entry = SymlinkEntry(
            name=dep.name,
            version=dep.version,
            target_path=os.path.join(os.path.abspath(global_store_root), *dep.store_path.split("/")),
            link_path=dep.name,
            link_type=config.preferred_type(),
            target_hash=dep.hash,
        )
        self.links[dep.name] = entry
        self.last_modified = time.time()
        return SymlinkStatus.CREATED

    def remove_link(self, name: str) -> Optional[SymlinkEntry]:
        entry = self.links.pop(name, None)
        if entry is not None:
            self.last_modified = time.time()
        return entry

    def get_link(self, name: str) -> Optional[SymlinkEntry]:
        return self.links.get(name)

    def has_link(self, name: str) -> bool:
        return name in self.links

    def link_count(self) -> int:
        return len(self.links)

    def get_full_link_path(self, name: str) -> Optional[str]:
        entry = self.links.get(name)
        if entry is None:
            return None
        return os.path.join(self.root_path, *entry.link_path.split("/"))

    def update_link_status(self, name: str, exists: bool) -> bool:
        entry = self.links.get(name)
        if entry is None:
            return False
        if entry.exists != exists:
            entry.exists = exists
            self.last_modified = time.time()
        return True

    def cleanup_broken_links(self) -> List[str]:
        """Drop entries whose link is recorded as missing or invalid."""
        broken = [name for name, entry in self.links.items() if not entry.exists]
        for name in broken:
            del self.links[name]
        if broken:
            self.last_modified = time.time()
        return broken

    def get_link_stats(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        for entry in self.links.values():
            by_type[entry.link_type.value] = by_type.get(entry.link_type.value, 0) + 1
        existing = sum(1 for e in self.links.values() if e.exists)
        return {
            "total_links": len(self.links),
            "existing_links": existing,
            "broken_links": len(self.links) - existing,
            "by_type": by_type,
        }

    def validate(self) -> None:
        for name, entry in self.links.items():
            if name != entry.name:
                raise ValidationError(f"Link key {name} does not match entry name {entry.name}")
            entry.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_path": self.root_path,
            "ecosystem": self.ecosystem.value,
            "version": self.version,
            "created_at": self.created_at,
            "last_modified": self.last_modified,
            "links": {name: entry.to_dict() for name, entry in self.links.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SymlinkStructure":
        return cls(
            root_path=data["root_path"],
            ecosystem=Ecosystem.parse(data["ecosystem"]),
            links={name: SymlinkEntry.from_dict(e) for name, e in (data.get("links") or {}).items()},
            version=int(data.get("version", 1)),
            created_at=float(data.get("created_at", 0.0)),
            last_modified=float(data.get("last_modified", 0.0)),
        )
