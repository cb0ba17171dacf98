"""Exception hierarchy for the package manager core."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class ErrorKind(Enum):
    """Broad error categories.

    Args:
        Enum (string): Error category names.
    """

    IO = "io"
    CONFIG = "config"
    NETWORK = "network"
    VALIDATION = "validation"
    SYMLINK = "symlink"
    DEPENDENCY = "dependency"
    INSTALLATION = "installation"
    REGISTRY = "registry"
    STORE = "store"
    DOWNLOAD = "download"


class PpmError(Exception):
    """Base class for all package manager errors."""

    kind = ErrorKind.INSTALLATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PpmError):
    """A model or configuration value failed validation."""

    kind = ErrorKind.VALIDATION


# --- Resolution ---


class ResolverError(PpmError):
    """Base class for dependency resolution errors."""

    kind = ErrorKind.DEPENDENCY


class VersionConflict(ResolverError):
    """Two resolved versions of the same package disagree."""

    def __init__(self, package: str, version1: str, version2: str):
        super().__init__(f"Version conflict for package '{package}': {version1} vs {version2}")
        self.package = package
        self.version1 = version1
        self.version2 = version2


class CircularDependency(ResolverError):
    """A dependency cycle was detected."""

    def __init__(self, cycle: List[str]):
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class MaxDepthExceeded(ResolverError):
    """Resolution went deeper than the configured bound."""

    def __init__(self, max_depth: int):
        super().__init__(f"Maximum resolution depth ({max_depth}) exceeded")
        self.max_depth = max_depth


class PackageNotFound(ResolverError):
    """The package does not exist in its ecosystem's registry."""

    def __init__(self, package: str, ecosystem: str):
        super().__init__(f"Package '{package}' not found in {ecosystem} registry")
        self.package = package
        self.ecosystem = ecosystem


class InvalidVersionSpec(ResolverError):
    """A version spec could not be parsed or matched nothing."""

    def __init__(self, package: str, version: str, reason: Optional[str] = None):
        message = f"Invalid version specification '{version}' for package '{package}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.package = package
        self.version = version


class UnsupportedEcosystem(ResolverError):
    """No registry adapter is configured for the ecosystem."""

    def __init__(self, ecosystem: str):
        super().__init__(f"Unsupported ecosystem: {ecosystem}")
        self.ecosystem = ecosystem


# --- Registry adapters ---


class RegistryError(PpmError):
    """Base class for registry adapter failures."""

    kind = ErrorKind.REGISTRY


class RegistryRequestFailed(RegistryError):
    """The registry request failed without a usable response."""

    kind = ErrorKind.NETWORK


class RegistryPackageNotFound(RegistryError):
    """The registry answered 404 for a package."""

    def __init__(self, package: str):
        super().__init__(f"Package '{package}' not found")
        self.package = package


class RegistryVersionNotFound(RegistryError):
    """The package exists but not at the requested version."""

    def __init__(self, package: str, version: str):
        super().__init__(f"Version '{version}' not found for package '{package}'")
        self.package = package
        self.version = version


class InvalidPackageName(RegistryError):
    """The name is not valid for the ecosystem."""

    def __init__(self, package: str):
        super().__init__(f"Invalid package name: {package}")
        self.package = package


class RegistryParseError(RegistryError):
    """The registry response could not be interpreted."""


class RegistryTimeout(RegistryError):
    """Every attempt to reach the registry timed out."""

    kind = ErrorKind.NETWORK


class RateLimited(RegistryError):
    """The registry answered HTTP 429."""

    kind = ErrorKind.NETWORK


# --- Store, download, link, lock file ---


class StoreError(PpmError):
    """Global store failure."""

    kind = ErrorKind.STORE


class DownloadError(PpmError):
    """A single download failed."""

    kind = ErrorKind.DOWNLOAD

    def __init__(self, key: str, url: str, reason: str):
        super().__init__(f"Download of '{key}' from {url} failed: {reason}")
        self.key = key
        self.url = url
        self.reason = reason


class IntegrityError(DownloadError):
    """Downloaded content does not match its declared integrity."""

    kind = ErrorKind.VALIDATION


class LinkError(PpmError):
    """Creating or inspecting a project link failed."""

    kind = ErrorKind.SYMLINK


class LockFileError(PpmError):
    """Lock file could not be read, written or validated."""

    kind = ErrorKind.IO
