"""Version spec parsing and ecosystem-specific version resolution."""

from ..models.dependency import is_exact_version
from .models import ResolutionMode, VersionSpec, parse_spec
from .resolvers import Pep440Resolver, SemverResolver, VersionResolver, resolver_for

__all__ = [
    "Pep440Resolver",
    "ResolutionMode",
    "SemverResolver",
    "VersionResolver",
    "VersionSpec",
    "is_exact_version",
    "parse_spec",
    "resolver_for",
]
