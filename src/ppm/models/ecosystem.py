"""Supported ecosystems and their capabilities."""

from __future__ import annotations

import re
from enum import Enum

from ..constants import Constants
from ..errors import ValidationError

_NPM_NAME = re.compile(r"^[a-z0-9\-._~/@]+$")
_PYTHON_NAME = re.compile(r"^[A-Za-z0-9\-_.]+$")
_PEP503_SEPARATORS = re.compile(r"[-_.]+")


class VersionScheme(Enum):
    """Version grammar used by an ecosystem.

    Args:
        Enum (string): Version scheme names.
    """

    SEMVER = "semver"
    PEP440 = "pep440"


class Ecosystem(Enum):
    """Enum for supported ecosystems."""

    JAVASCRIPT = "javascript"
    PYTHON = "python"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> "Ecosystem":
        """Parse an ecosystem name or one of its aliases.

        Raises:
            ValidationError: If the name is not recognised.
        """
        key = (value or "").strip().lower()
        if key in ("javascript", "js", "npm", "node"):
            return cls.JAVASCRIPT
        if key in ("python", "py", "pypi", "pip"):
            return cls.PYTHON
        raise ValidationError(f"Unknown ecosystem: {value}")

    @property
    def registry_url(self) -> str:
        """Base URL of the default registry."""
        if self is Ecosystem.JAVASCRIPT:
            return Constants.REGISTRY_URL_NPM
        return Constants.REGISTRY_URL_PYPI

    @property
    def registry_key(self) -> str:
        """Short registry tag used in cache keys."""
        return "npm" if self is Ecosystem.JAVASCRIPT else "pypi"

    @property
    def package_format(self) -> str:
        """Archive format served by the registry."""
        return "tarball" if self is Ecosystem.JAVASCRIPT else "wheel"

    @property
    def package_extension(self) -> str:
        return ".tgz" if self is Ecosystem.JAVASCRIPT else ".whl"

    @property
    def package_manager(self) -> str:
        return "npm" if self is Ecosystem.JAVASCRIPT else "pip"

    @property
    def link_dir_name(self) -> str:
        """Directory under the project's .ppm directory holding links."""
        return "node_modules" if self is Ecosystem.JAVASCRIPT else "venv"

    @property
    def version_scheme(self) -> VersionScheme:
        return VersionScheme.SEMVER if self is Ecosystem.JAVASCRIPT else VersionScheme.PEP440

    def normalize_name(self, name: str) -> str:
        """Return the registry's canonical form of a package name.

        PyPI names are PEP 503 normalized; npm names are case sensitive and
        returned unchanged.
        """
        name = name.strip()
        if self is Ecosystem.PYTHON:
            return _PEP503_SEPARATORS.sub("-", name).lower()
        return name

    def validate_package_name(self, name: str) -> bool:
        """Check a name against the ecosystem's naming rules."""
        if not name:
            return False
        if self is Ecosystem.JAVASCRIPT:
            if name.startswith(".") or name.startswith("_") or len(name) > 214:
                return False
            return bool(_NPM_NAME.match(name))
        return bool(_PYTHON_NAME.match(name))
