"""Registry adapters for npm and PyPI."""

from typing import Dict

from ..models.ecosystem import Ecosystem
from .base import PackageInfo, RegistryAdapter, ReleaseInfo
from .npm import NpmRegistry
from .pypi import PyPIRegistry


def default_adapters(metadata_cache=None) -> Dict[Ecosystem, RegistryAdapter]:
    """Adapters for both ecosystems using the configured registry URLs."""
    return {
        Ecosystem.JAVASCRIPT: NpmRegistry(metadata_cache=metadata_cache),
        Ecosystem.PYTHON: PyPIRegistry(metadata_cache=metadata_cache),
    }


__all__ = [
    "NpmRegistry",
    "PackageInfo",
    "PyPIRegistry",
    "RegistryAdapter",
    "ReleaseInfo",
    "default_adapters",
]
