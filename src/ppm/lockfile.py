"""ppm.lock: the pinned dependency set of a project."""

from __future__ import annotations

import datetime
import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .common.integrity import is_valid_sha256
from .constants import Constants
from .errors import LockFileError, ValidationError
from .models.dependency import ResolvedDependency
from .models.ecosystem import Ecosystem

logger = logging.getLogger(__name__)

CURRENT_VERSION = 1


def compute_project_hash(manifest: Union[Mapping[str, Any], bytes, str]) -> str:
    """SHA-256 of a manifest.

    Mappings are canonicalized as JSON with sorted keys and compact
    separators, so key order and whitespace do not change the hash.
    """
    if isinstance(manifest, Mapping):
        payload = json.dumps(manifest, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        data = payload.encode("utf-8")
    elif isinstance(manifest, str):
        data = manifest.encode("utf-8")
    else:
        data = bytes(manifest)
    return hashlib.sha256(data).hexdigest()


def _now_rfc3339() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class LockFile:
    """Resolved dependencies per ecosystem plus the manifest hash they came from."""

    project_hash: str
    resolved_dependencies: Dict[str, List[ResolvedDependency]] = field(default_factory=dict)
    version: int = CURRENT_VERSION
    generation_timestamp: str = field(default_factory=_now_rfc3339)
    ppm_version: str = field(default_factory=lambda: Constants.PPM_VERSION)

    @classmethod
    def new(cls, project_hash: str) -> "LockFile":
        return cls(project_hash=project_hash)

    def add_dependency(self, dep: ResolvedDependency) -> None:
        """Add or replace the pinned entry for dep's name within its ecosystem."""
        deps = self.resolved_dependencies.setdefault(dep.ecosystem.value, [])
        deps[:] = [d for d in deps if d.name != dep.name]
        deps.append(dep)
        deps.sort(key=lambda d: d.name)

    def get_dependencies(self, ecosystem: Ecosystem) -> List[ResolvedDependency]:
        return list(self.resolved_dependencies.get(ecosystem.value, []))

    def remove_dependency(self, ecosystem: Ecosystem, name: str) -> bool:
        deps = self.resolved_dependencies.get(ecosystem.value, [])
        kept = [d for d in deps if d.name != name]
        if len(kept) == len(deps):
            return False
        self.resolved_dependencies[ecosystem.value] = kept
        return True

    def total_dependency_count(self) -> int:
        return sum(len(deps) for deps in self.resolved_dependencies.values())

    def is_empty(self) -> bool:
        return self.total_dependency_count() == 0

    def needs_regeneration(self, current_project_hash: str) -> bool:
        """A lock file is stale once the manifest hash changes."""
        return self.project_hash != current_project_hash

    def validate(self) -> None:
        if self.version != CURRENT_VERSION:
            raise ValidationError(f"Unsupported lock file version {self.version}")
        if not is_valid_sha256(self.project_hash):
            raise ValidationError(f"Invalid project hash: {self.project_hash}")
        for eco_name, deps in self.resolved_dependencies.items():
            ecosystem = Ecosystem.parse(eco_name)
            for dep in deps:
                if dep.ecosystem is not ecosystem:
                    raise ValidationError(f"{dep.identifier()} filed under {eco_name}")
                dep.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "project_hash": self.project_hash,
            "resolved_dependencies": {
                eco: [d.to_dict() for d in deps] for eco, deps in sorted(self.resolved_dependencies.items())
            },
            "generation_timestamp": self.generation_timestamp,
            "ppm_version": self.ppm_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockFile":
        try:
            return cls(
                project_hash=data["project_hash"],
                resolved_dependencies={
                    eco: [ResolvedDependency.from_dict(d) for d in deps]
                    for eco, deps in (data.get("resolved_dependencies") or {}).items()
                },
                version=int(data.get("version", CURRENT_VERSION)),
                generation_timestamp=data.get("generation_timestamp", ""),
                ppm_version=data.get("ppm_version", ""),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise LockFileError(f"Malformed lock file: {exc}") from exc

    @classmethod
    def load(cls, path: str) -> "LockFile":
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise LockFileError(f"Cannot read lock file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise LockFileError(f"Lock file {path} is not a JSON object")
        return cls.from_dict(data)

    @classmethod
    def load_if_exists(cls, path: str) -> Optional["LockFile"]:
        return cls.load(path) if os.path.isfile(path) else None

    def save(self, path: str) -> None:
        """Validate and write atomically."""
        self.validate()
        directory = os.path.dirname(os.path.abspath(path))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".ppm-lock-", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self.to_dict(), fh, indent=2)
                fh.write("\n")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise LockFileError(f"Cannot write lock file {path}: {exc}") from exc
        logger.info("Wrote %s (%d dependencies)", path, self.total_dependency_count())
