"""npm version resolver using semantic versioning."""

import re
from typing import Iterable, List, Optional

import semantic_version

from ...models.ecosystem import VersionScheme
from ..models import PickResult
from .base import VersionResolver

_HYPHEN_RANGE = re.compile(r"^([0-9A-Za-z.+-]+)\s+-\s+([0-9A-Za-z.+-]+)$")
_X_RANGE = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.x)?$")


def _stable(candidates: Iterable[str]) -> List[semantic_version.Version]:
    """Parse candidates; invalid versions and pre-releases are dropped."""
    versions = []
    for raw in candidates:
        try:
            version = semantic_version.Version(raw)
        except ValueError:
            continue
        if not version.prerelease:
            versions.append(version)
    return versions


def _highest(versions: List[semantic_version.Version]) -> Optional[str]:
    return str(max(versions)) if versions else None


class SemverResolver(VersionResolver):
    """Resolver for npm packages using semantic versioning."""

    @property
    def scheme(self) -> VersionScheme:
        return VersionScheme.SEMVER

    def _pick_latest(self, candidates: List[str]) -> PickResult:
        if not candidates:
            return None, 0, "No versions available"
        best = _highest(_stable(candidates))
        if best is None:
            return None, len(candidates), "No valid semantic versions found"
        return best, len(candidates), None

    def _pick_exact(self, version: str, candidates: List[str]) -> PickResult:
        version = version.lstrip("=v").strip()
        if version.count(".") < 2:
            # "1" and "1.2" are x-ranges in npm
            return self._pick_range(version, candidates)
        if version not in candidates:
            return None, len(candidates), f"Version {version} not found"
        return version, len(candidates), None

    def _normalize_spec(self, spec_str: str) -> str:
        """Rewrite npm-only syntax into comparators SimpleSpec accepts.

        Handles hyphen ranges ("1.2.3 - 1.4.5"), x-ranges ("1.2.x", "1.*",
        "1") and whitespace-separated comparator sets (">=1.0.0 <2.0.0").
        """
        text = spec_str.strip()
        hyphen = _HYPHEN_RANGE.match(text)
        if hyphen:
            return f">={hyphen.group(1)},<={hyphen.group(2)}"

        xrange = _X_RANGE.match(text.replace("*", "x").lower())
        if xrange:
            major = int(xrange.group(1))
            if xrange.group(2) is None:
                return f">={major}.0.0,<{major + 1}.0.0"
            minor = int(xrange.group(2))
            return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

        return re.sub(r"\s+", ",", text)

    def _pick_range(self, spec_str: str, candidates: List[str]) -> PickResult:
        # NpmSpec covers ^, ~, ||, hyphen and x-ranges; SimpleSpec is the fallback
        try:
            spec = semantic_version.NpmSpec(spec_str)
        except ValueError:
            try:
                spec = semantic_version.SimpleSpec(self._normalize_spec(spec_str))
            except ValueError as exc:
                return None, len(candidates), f"Invalid semver spec: {exc}"

        best = _highest([v for v in _stable(candidates) if spec.match(v)])
        if best is None:
            return None, len(candidates), f"No versions match spec '{spec_str}'"
        return best, len(candidates), None
