"""Project link management."""

from .manager import LinkManager, PlatformCapabilities
from .models import (
    SymlinkConfig,
    SymlinkEntry,
    SymlinkStatus,
    SymlinkStructure,
    SymlinkType,
    site_packages_path,
)

__all__ = [
    "LinkManager",
    "PlatformCapabilities",
    "SymlinkConfig",
    "SymlinkEntry",
    "SymlinkStatus",
    "SymlinkStructure",
    "SymlinkType",
    "site_packages_path",
]
