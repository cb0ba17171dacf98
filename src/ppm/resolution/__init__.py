"""Dependency resolution engine."""

from .engine import (
    DependencyResolver,
    DependencyTree,
    ResolutionConfig,
    ResolutionFailure,
    ResolutionNode,
    ResolutionResult,
    ResolutionRevisit,
    TreeNode,
    check_version_conflicts,
    find_version_conflicts,
)

__all__ = [
    "DependencyResolver",
    "DependencyTree",
    "ResolutionConfig",
    "ResolutionFailure",
    "ResolutionNode",
    "ResolutionResult",
    "ResolutionRevisit",
    "TreeNode",
    "check_version_conflicts",
    "find_version_conflicts",
]
