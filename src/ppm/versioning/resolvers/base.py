"""Base class for ecosystem version resolvers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ...models.ecosystem import VersionScheme
from ..models import PickResult, ResolutionMode, parse_spec


class VersionResolver(ABC):
    """Maps a spec string plus available versions to one exact version."""

    @property
    @abstractmethod
    def scheme(self) -> VersionScheme:
        """Version grammar handled by this resolver."""

    @abstractmethod
    def _pick_latest(self, candidates: List[str]) -> PickResult:
        """Pick the highest stable version."""

    @abstractmethod
    def _pick_exact(self, version: str, candidates: List[str]) -> PickResult:
        """Pick the candidate equal to version."""

    @abstractmethod
    def _pick_range(self, spec_str: str, candidates: List[str]) -> PickResult:
        """Pick the highest stable candidate inside the range."""

    def pick(
        self,
        spec_raw: str,
        candidates: List[str],
        dist_tags: Optional[Dict[str, str]] = None,
    ) -> PickResult:
        """Select the version a spec resolves to.

        Args:
            spec_raw: Version spec as declared.
            candidates: Available version strings.
            dist_tags: Optional registry tags (npm "latest", "next", ...).

        Returns:
            Tuple of (resolved_version, candidate_count, error_message)
        """
        spec = parse_spec(spec_raw)
        if spec.mode == ResolutionMode.EXACT:
            return self._pick_exact(spec.raw, candidates)
        if spec.mode == ResolutionMode.RANGE:
            return self._pick_range(spec.raw, candidates)
        return self._pick_tag(spec.tag or "latest", candidates, dist_tags or {})

    def matches(self, spec_raw: str, version: str) -> bool:
        """Return True when version would satisfy spec_raw."""
        resolved, _, _ = self.pick(spec_raw, [version])
        return resolved == version

    def _pick_tag(self, tag: str, candidates: List[str], dist_tags: Dict[str, str]) -> PickResult:
        """Resolve a tag; unknown or unusable tags fall back to latest stable."""
        tagged = dist_tags.get(tag)
        if tagged and tagged in candidates:
            exact, count, error = self._pick_exact(tagged, candidates)
            if exact is not None and parse_spec(exact).mode == ResolutionMode.EXACT:
                return exact, count, error
        if tag != "latest":
            return None, len(candidates), f"Unknown tag '{tag}'"
        return self._pick_latest(candidates)
