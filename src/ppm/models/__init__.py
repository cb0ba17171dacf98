"""Core data models."""

from .dependency import Dependency, Package, ResolvedDependency, is_exact_version
from .ecosystem import Ecosystem, VersionScheme

__all__ = [
    "Dependency",
    "Ecosystem",
    "Package",
    "ResolvedDependency",
    "VersionScheme",
    "is_exact_version",
]
