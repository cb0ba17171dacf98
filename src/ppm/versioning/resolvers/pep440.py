"""PyPI version resolver using PEP 440 specifiers."""

from typing import List, Tuple

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from ...models.ecosystem import VersionScheme
from ..models import PickResult
from .base import VersionResolver


class Pep440Resolver(VersionResolver):
    """Resolver for PyPI packages using PEP 440 version semantics."""

    @property
    def scheme(self) -> VersionScheme:
        return VersionScheme.PEP440

    def _parse_candidates(self, candidates: List[str]) -> List[Tuple[Version, str]]:
        """Parse candidates as (Version, original string), dropping pre/dev releases."""
        parsed = []
        for raw in candidates:
            try:
                ver = Version(raw)
            except InvalidVersion:
                continue
            if ver.is_prerelease or ver.is_devrelease:
                continue
            parsed.append((ver, raw))
        return parsed

    def _pick_latest(self, candidates: List[str]) -> PickResult:
        if not candidates:
            return None, 0, "No versions available"
        parsed = self._parse_candidates(candidates)
        if not parsed:
            return None, len(candidates), "No valid PEP 440 versions found"
        return max(parsed)[1], len(candidates), None

    def _pick_exact(self, version: str, candidates: List[str]) -> PickResult:
        """Match by PEP 440 equality so 1.0 and 1.0.0 are the same release."""
        try:
            wanted = Version(version)
        except InvalidVersion:
            return None, len(candidates), f"Invalid version '{version}'"
        for ver, raw in self._parse_candidates(candidates):
            if ver == wanted:
                return raw, len(candidates), None
        return None, len(candidates), f"Version {version} not found"

    def _pick_range(self, spec_str: str, candidates: List[str]) -> PickResult:
        spec_str = spec_str.strip()
        if spec_str[0].isdigit():
            spec_str = f"=={spec_str}"
        try:
            spec = SpecifierSet(spec_str)
        except InvalidSpecifier as e:
            return None, len(candidates), f"Invalid PEP 440 specifier: {str(e)}"

        matching = [(ver, raw) for ver, raw in self._parse_candidates(candidates) if ver in spec]
        if not matching:
            return None, len(candidates), f"No versions match spec '{spec_str}'"
        return max(matching)[1], len(candidates), None
