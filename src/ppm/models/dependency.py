"""Dependency models flowing through resolution, storage and linking."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from ..common.integrity import is_valid_sha256, sharded_store_path, verify_integrity
from ..errors import ValidationError
from .ecosystem import Ecosystem

_RANGE_CHARS = set("^~<>=*, \t|")
_X_SEGMENT = re.compile(r"(^|\.)[xX](\.|$)")
_PRERELEASE = re.compile(
    r"(?i)(alpha|beta|rc|pre|dev|(?<=\d)a\d|(?<=\d)b\d|(?<=\d)c\d|\d-[0-9a-z])"
)
_NPM_SPEC_START = ("^", "~", ">=", "<=", ">", "<", "=")
_PYTHON_SPEC_START = (">=", "<=", "!=", "==", "~=", ">", "<")


def is_exact_version(version: str) -> bool:
    """Return True if version is a terminal, exact release version.

    Exact versions carry no range operators, wildcards, tags such as
    "latest", or pre-release markers.
    """
    if not version or not version[0].isdigit():
        return False
    if any(ch in _RANGE_CHARS for ch in version):
        return False
    if "latest" in version.lower() or _X_SEGMENT.search(version):
        return False
    return not _PRERELEASE.search(version)


@dataclass(frozen=True)
class Dependency:
    """A declared dependency: name plus version spec for one ecosystem."""

    name: str
    version_spec: str
    ecosystem: Ecosystem
    dev_only: bool = False

    @classmethod
    def production(cls, name: str, version_spec: str, ecosystem: Ecosystem) -> "Dependency":
        return cls(name, version_spec, ecosystem, False)

    @classmethod
    def development(cls, name: str, version_spec: str, ecosystem: Ecosystem) -> "Dependency":
        return cls(name, version_spec, ecosystem, True)

    def full_identifier(self) -> str:
        """Key used for visited tracking and the per-run resolution cache."""
        return f"{self.ecosystem.value}:{self.name}@{self.version_spec}"

    def validate(self) -> None:
        """Raise ValidationError if the name or spec is malformed."""
        if not self.name.strip():
            raise ValidationError("Dependency name cannot be empty")
        spec = self.version_spec.strip()
        if self.ecosystem is Ecosystem.JAVASCRIPT:
            # "", "x" and dist-tags such as "next" resolve through the tag path
            if not spec or spec == "*" or spec[0].isalpha():
                return
        elif not spec:
            raise ValidationError(f"Version spec for '{self.name}' cannot be empty")
        if spec in ("*", "latest"):
            return
        starts = _NPM_SPEC_START if self.ecosystem is Ecosystem.JAVASCRIPT else _PYTHON_SPEC_START
        if not (spec.startswith(starts) or spec[0].isdigit()):
            raise ValidationError(
                f"Invalid {self.ecosystem.value} version spec '{spec}' for '{self.name}'"
            )

    def __str__(self) -> str:
        return self.full_identifier()


@dataclass(frozen=True)
class ResolvedDependency:
    """Terminal resolution artifact pinned to one exact version.

    Instances are immutable snapshots shared between resolution, download,
    store and link stages; use with_content_hash() to derive an updated copy.
    """

    name: str
    version: str
    ecosystem: Ecosystem
    hash: str
    integrity: str
    store_path: str

    @classmethod
    def create(
        cls, name: str, version: str, ecosystem: Ecosystem, content_hash: str, integrity: str
    ) -> "ResolvedDependency":
        """Build an entry whose store path is derived from the content hash."""
        return cls(name, version, ecosystem, content_hash, integrity, sharded_store_path(content_hash))

    def identifier(self) -> str:
        return f"{self.name}@{self.version}"

    def validate(self) -> None:
        """Raise ValidationError unless every invariant holds."""
        if not self.name:
            raise ValidationError("Resolved dependency name cannot be empty")
        if not is_exact_version(self.version):
            raise ValidationError(
                f"Resolved version '{self.version}' for '{self.name}' is not an exact version"
            )
        if not is_valid_sha256(self.hash):
            raise ValidationError(f"Invalid SHA-256 hash for '{self.name}': {self.hash}")
        if not self.integrity:
            raise ValidationError(f"Integrity for '{self.name}' cannot be empty")
        if not self.store_path:
            raise ValidationError(f"Store path for '{self.name}' cannot be empty")

    def verify_integrity(self, data: bytes) -> bool:
        return verify_integrity(data, self.integrity)

    def with_content_hash(self, content_hash: str) -> "ResolvedDependency":
        """Return a copy addressed by a different content hash."""
        return replace(self, hash=content_hash, store_path=sharded_store_path(content_hash))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "ecosystem": self.ecosystem.value,
            "hash": self.hash,
            "integrity": self.integrity,
            "store_path": self.store_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolvedDependency":
        try:
            return cls(
                name=data["name"],
                version=data["version"],
                ecosystem=Ecosystem.parse(data["ecosystem"]),
                hash=data["hash"],
                integrity=data["integrity"],
                store_path=data.get("store_path") or sharded_store_path(data["hash"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed resolved dependency: {exc}") from exc


@dataclass
class Package:
    """A concrete package release as handed to the global store."""

    name: str
    version: str
    ecosystem: Ecosystem
    hash: str
    size: int = 0
    dependencies: List[Dependency] = field(default_factory=list)
    download_url: Optional[str] = None
    integrity: Optional[str] = None

    @classmethod
    def from_resolved(cls, dep: ResolvedDependency, size: int = 0) -> "Package":
        return cls(
            name=dep.name,
            version=dep.version,
            ecosystem=dep.ecosystem,
            hash=dep.hash,
            size=size,
            integrity=dep.integrity,
        )

    def validate(self) -> None:
        if not self.name or not self.version:
            raise ValidationError("Package name and version cannot be empty")
        if not is_valid_sha256(self.hash):
            raise ValidationError(f"Invalid SHA-256 hash for package '{self.name}': {self.hash}")
        if self.size < 0:
            raise ValidationError(f"Package size for '{self.name}' cannot be negative")
