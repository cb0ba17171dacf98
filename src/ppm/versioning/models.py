"""Data models for version spec handling."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..models.dependency import is_exact_version


class ResolutionMode(Enum):
    """Resolution strategy derived from a version spec string."""
    EXACT = "exact"
    RANGE = "range"
    LATEST = "latest"


@dataclass(frozen=True)
class VersionSpec:
    """Normalized representation of a version spec."""
    raw: str
    mode: ResolutionMode
    tag: Optional[str] = None  # npm dist-tag for LATEST mode, e.g. "latest" or "next"


# (resolved_version, candidate_count, error_message)
PickResult = Tuple[Optional[str], int, Optional[str]]


def parse_spec(raw: str) -> VersionSpec:
    """Classify a raw spec string into a resolution mode."""
    spec = (raw or "").strip()
    if spec in ("", "*", "x", "X"):
        return VersionSpec(raw=spec, mode=ResolutionMode.LATEST, tag="latest")
    if spec[0].isalpha():
        return VersionSpec(raw=spec, mode=ResolutionMode.LATEST, tag=spec)
    if is_exact_version(spec):
        return VersionSpec(raw=spec, mode=ResolutionMode.EXACT)
    return VersionSpec(raw=spec, mode=ResolutionMode.RANGE)
