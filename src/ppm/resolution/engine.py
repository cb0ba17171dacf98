"""Breadth-first dependency resolution engine."""

from __future__ import annotations

import dataclasses
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Mapping, Optional, Set, Tuple

from ..common.integrity import sri_from_sha256_hex
from ..common.logging_utils import extra_context, is_debug_enabled, Timer
from ..constants import Constants
from ..errors import (
    InvalidPackageName,
    InvalidVersionSpec,
    MaxDepthExceeded,
    PackageNotFound,
    PpmError,
    RegistryError,
    RegistryPackageNotFound,
    RegistryParseError,
    RegistryVersionNotFound,
    UnsupportedEcosystem,
    ValidationError,
    VersionConflict,
)
from ..models.dependency import Dependency, ResolvedDependency
from ..models.ecosystem import Ecosystem
from ..registry.base import RegistryAdapter, ReleaseInfo

logger = logging.getLogger(__name__)


@dataclass
class ResolutionConfig:
    """Tunables for one resolution run."""

    max_depth: int = field(default_factory=lambda: Constants.MAX_RESOLUTION_DEPTH)
    include_dev_dependencies: bool = False
    prefer_cached: bool = True
    record_revisits: bool = False
    # package name -> version spec overriding whatever a manifest declares
    ecosystem_constraints: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        if self.max_depth < 0:
            raise ValidationError(f"max_depth must be >= 0, got {self.max_depth}")


@dataclass(frozen=True)
class ResolutionNode:
    """Queue element: a dependency awaiting resolution."""

    dependency: Dependency
    depth: int
    parent: Optional[str] = None


@dataclass
class ResolutionFailure:
    """A dependency that could not be resolved, with its position in the graph."""

    dependency: Dependency
    error: str
    depth: int
    parent: Optional[str] = None


@dataclass
class ResolutionRevisit:
    """Diagnostic: an already processed dependency was reached again."""

    dependency: Dependency
    depth: int
    parent: Optional[str] = None


@dataclass
class ResolutionResult:
    """Outcome of a resolution run."""

    resolved: List[ResolvedDependency] = field(default_factory=list)
    failed: List[ResolutionFailure] = field(default_factory=list)
    total_processed: int = 0
    max_depth_reached: int = 0
    resolution_time_ms: float = 0.0
    revisits: List[ResolutionRevisit] = field(default_factory=list)
    # dependency key -> keys of the children it enqueued
    edges: Dict[str, List[str]] = field(default_factory=dict)
    # dependency key -> exact version it resolved to
    resolved_keys: Dict[str, str] = field(default_factory=dict)

    def is_successful(self) -> bool:
        return not self.failed

    def resolved_count(self) -> int:
        return len(self.resolved)

    def failed_count(self) -> int:
        return len(self.failed)

    def dependencies_by_ecosystem(self, ecosystem: Ecosystem) -> List[ResolvedDependency]:
        return [dep for dep in self.resolved if dep.ecosystem is ecosystem]


@dataclass
class TreeNode:
    """One dependency in a rendered dependency tree."""

    dependency: Dependency
    resolved_version: Optional[str]
    depth: int
    children: List["TreeNode"] = field(default_factory=list)


@dataclass
class DependencyTree:
    roots: List[TreeNode]
    total_dependencies: int
    max_depth: int


def find_version_conflicts(resolved: List[ResolvedDependency]) -> List[VersionConflict]:
    """Return every same-name, same-ecosystem pair that resolved to different versions."""
    seen: Dict[Tuple[Ecosystem, str], str] = {}
    conflicts: List[VersionConflict] = []
    for dep in resolved:
        key = (dep.ecosystem, dep.name)
        existing = seen.get(key)
        if existing is None:
            seen[key] = dep.version
        elif existing != dep.version:
            conflicts.append(VersionConflict(f"{dep.name}@{dep.ecosystem.value}", existing, dep.version))
    return conflicts


def check_version_conflicts(resolved: List[ResolvedDependency]) -> None:
    """Opt-in validation pass.

    Raises:
        VersionConflict: For the first package resolved to two different versions.
    """
    conflicts = find_version_conflicts(resolved)
    if conflicts:
        raise conflicts[0]


class DependencyResolver:
    """Turns declared dependencies into a flat list of exact, resolved packages.

    Args:
        adapters: Registry adapter per ecosystem.
        config: Default configuration for resolve().
    """

    def __init__(
        self,
        adapters: Mapping[Ecosystem, RegistryAdapter],
        config: Optional[ResolutionConfig] = None,
    ):
        self.adapters = dict(adapters)
        self.config = config or ResolutionConfig()
        self._version_cache: Dict[str, str] = {}
        self._release_cache: Dict[str, ReleaseInfo] = {}

    def update_config(self, config: ResolutionConfig) -> None:
        config.validate()
        self.config = config

    def clear_cache(self) -> None:
        self._version_cache.clear()
        self._release_cache.clear()

    def get_cache_stats(self) -> Dict[str, int]:
        return {
            "version_cache_entries": len(self._version_cache),
            "release_cache_entries": len(self._release_cache),
        }

    def _adapter(self, ecosystem: Ecosystem) -> RegistryAdapter:
        adapter = self.adapters.get(ecosystem)
        if adapter is None:
            raise UnsupportedEcosystem(ecosystem.value)
        return adapter

    def resolve(
        self, dependencies: List[Dependency], config: Optional[ResolutionConfig] = None
    ) -> ResolutionResult:
        """Resolve root dependencies and everything they pull in, breadth first.

        Per-dependency failures are collected in the result; only an invalid
        configuration raises.

        Args:
            dependencies: Root dependencies, processed at depth 0.
            config: Overrides the resolver's default configuration for this run.

        Returns:
            ResolutionResult: Resolved packages, failures and traversal stats.
        """
        config = config or self.config
        config.validate()
        if not config.prefer_cached:
            self.clear_cache()

        result = ResolutionResult()
        visited: Set[str] = set()
        emitted: Set[Tuple[Ecosystem, str, str]] = set()
        queue: Deque[ResolutionNode] = deque(ResolutionNode(dep, 0) for dep in dependencies)

        logger.info("Resolving %d root dependencies", len(dependencies))
        with Timer() as t:
            while queue:
                node = queue.popleft()
                if node.depth > config.max_depth:
                    result.failed.append(ResolutionFailure(
                        dependency=node.dependency,
                        error=str(MaxDepthExceeded(config.max_depth)),
                        depth=node.depth,
                        parent=node.parent,
                    ))
                    continue

                result.max_depth_reached = max(result.max_depth_reached, node.depth)
                result.total_processed += 1

                dep = self._apply_constraints(node.dependency, config)
                dep_key = dep.full_identifier()
                if dep_key in visited:
                    if config.record_revisits:
                        result.revisits.append(ResolutionRevisit(dep, node.depth, node.parent))
                    continue
                visited.add(dep_key)

                if dep.dev_only and not config.include_dev_dependencies:
                    continue

                try:
                    resolved, release = self._resolve_single(dep, config)
                except PpmError as exc:
                    self._record_failure(result, node, dep, exc)
                    continue

                result.resolved_keys[dep_key] = resolved.version
                identity = (resolved.ecosystem, resolved.name, resolved.version)
                if identity in emitted:
                    # Another spec already pinned this exact release and queued its children
                    continue
                emitted.add(identity)
                result.resolved.append(resolved)

                children = result.edges.setdefault(dep_key, [])
                for child in release.dependencies or []:
                    child_key = self._apply_constraints(child, config).full_identifier()
                    children.append(child_key)
                    if child_key not in visited:
                        queue.append(ResolutionNode(child, node.depth + 1, dep_key))
                    elif config.record_revisits:
                        result.revisits.append(ResolutionRevisit(child, node.depth + 1, dep_key))

        result.resolution_time_ms = t.duration_ms()
        logger.info(
            "Resolution finished: %d resolved, %d failed, %d processed in %.0f ms",
            result.resolved_count(),
            result.failed_count(),
            result.total_processed,
            result.resolution_time_ms,
        )
        return result

    def resolve_ecosystem_dependencies(
        self, dependencies: List[Dependency], ecosystem: Ecosystem,
        config: Optional[ResolutionConfig] = None,
    ) -> ResolutionResult:
        """Resolve only the dependencies belonging to one ecosystem."""
        return self.resolve([d for d in dependencies if d.ecosystem is ecosystem], config)

    def find_latest_compatible(self, dependency: Dependency) -> str:
        """Return the highest published version satisfying the dependency's spec."""
        return self._resolve_version(dependency, self.config)

    def get_available_versions(self, package_name: str, ecosystem: Ecosystem) -> List[str]:
        try:
            versions, _ = self._adapter(ecosystem).get_versions(package_name, prefer_cached=False)
        except (RegistryPackageNotFound, InvalidPackageName) as exc:
            raise PackageNotFound(package_name, ecosystem.value) from exc
        return versions

    def package_exists(self, package_name: str, ecosystem: Ecosystem) -> bool:
        return self._adapter(ecosystem).package_exists(package_name)

    def get_release(self, dep: ResolvedDependency) -> ReleaseInfo:
        """Registry metadata (download URL, dependencies) for a resolved package."""
        return self._release(Dependency(dep.name, dep.version, dep.ecosystem), dep.version)

    def create_dependency_tree(
        self, root_dependencies: List[Dependency], config: Optional[ResolutionConfig] = None
    ) -> DependencyTree:
        """Resolve roots and arrange the outcome as a tree following parent links."""
        config = config or self.config
        result = self.resolve(root_dependencies, config)

        def build(dep: Dependency, depth: int, path: Set[str]) -> TreeNode:
            key = self._apply_constraints(dep, config).full_identifier()
            node = TreeNode(dep, result.resolved_keys.get(key), depth)
            if key in path:
                return node
            for child_key in result.edges.get(key, []):
                child = _dependency_from_key(child_key)
                if child is not None:
                    node.children.append(build(child, depth + 1, path | {key}))
            return node

        return DependencyTree(
            roots=[build(dep, 0, set()) for dep in root_dependencies],
            total_dependencies=result.resolved_count(),
            max_depth=result.max_depth_reached,
        )

    def _apply_constraints(self, dep: Dependency, config: ResolutionConfig) -> Dependency:
        override = config.ecosystem_constraints.get(dep.name)
        if override and override != dep.version_spec:
            return dataclasses.replace(dep, version_spec=override)
        return dep

    def _resolve_version(self, dep: Dependency, config: ResolutionConfig) -> str:
        """Spec -> exact version, memoized by the dependency's full identifier."""
        cache_key = dep.full_identifier()
        cached = self._version_cache.get(cache_key)
        if cached is not None:
            return cached

        dep.validate()
        adapter = self._adapter(dep.ecosystem)
        try:
            version = adapter.resolve_version(dep.name, dep.version_spec, prefer_cached=config.prefer_cached)
        except (RegistryPackageNotFound, InvalidPackageName) as exc:
            raise PackageNotFound(dep.name, dep.ecosystem.value) from exc
        except RegistryVersionNotFound as exc:
            raise InvalidVersionSpec(dep.name, dep.version_spec, "no matching version") from exc
        self._version_cache[cache_key] = version
        return version

    def _release(self, dep: Dependency, version: str) -> ReleaseInfo:
        key = f"{dep.ecosystem.value}:{dep.name}@{version}"
        release = self._release_cache.get(key)
        if release is None:
            release = self._adapter(dep.ecosystem).get_release(dep.name, version)
            self._release_cache[key] = release
        return release

    def _resolve_single(
        self, dep: Dependency, config: ResolutionConfig
    ) -> Tuple[ResolvedDependency, ReleaseInfo]:
        version = self._resolve_version(dep, config)
        release = self._release(dep, version)

        content_hash = release.content_hash()
        integrity = release.integrity
        if not integrity and release.sha256:
            integrity = sri_from_sha256_hex(content_hash)
        if not integrity:
            raise RegistryParseError(f"No integrity metadata published for {dep.name}@{version}")

        resolved = ResolvedDependency.create(
            name=dep.ecosystem.normalize_name(dep.name),
            version=version,
            ecosystem=dep.ecosystem,
            content_hash=content_hash,
            integrity=integrity,
        )
        resolved.validate()

        if is_debug_enabled(logger):
            logger.debug(
                "Resolved dependency",
                extra=extra_context(
                    event="resolve",
                    component="resolver",
                    action="resolve_single",
                    outcome="success",
                    target=dep.full_identifier(),
                    version=version,
                ),
            )
        return resolved, release

    def _record_failure(
        self, result: ResolutionResult, node: ResolutionNode, dep: Dependency, exc: PpmError
    ) -> None:
        level = logging.WARNING if isinstance(exc, RegistryError) else logging.INFO
        logger.log(level, "Failed to resolve %s: %s", dep.full_identifier(), exc)
        result.failed.append(ResolutionFailure(
            dependency=dep,
            error=str(exc),
            depth=node.depth,
            parent=node.parent,
        ))


def _dependency_from_key(key: str) -> Optional[Dependency]:
    """Inverse of Dependency.full_identifier() for tree rendering."""
    eco_part, sep, rest = key.partition(":")
    if not sep:
        return None
    # Scoped npm names start with "@", so split on the last "@"
    name, sep, spec = rest.rpartition("@")
    if not sep or not name:
        return None
    try:
        ecosystem = Ecosystem.parse(eco_part)
    except ValidationError:
        return None
    return Dependency(name, spec, ecosystem)
