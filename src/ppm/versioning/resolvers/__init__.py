"""Version resolvers for the supported version schemes."""

from typing import Dict

from ...models.ecosystem import Ecosystem, VersionScheme
from .base import VersionResolver
from .pep440 import Pep440Resolver
from .semver import SemverResolver

_RESOLVERS: Dict[VersionScheme, VersionResolver] = {
    VersionScheme.SEMVER: SemverResolver(),
    VersionScheme.PEP440: Pep440Resolver(),
}


def resolver_for(ecosystem: Ecosystem) -> VersionResolver:
    """Return the resolver for an ecosystem's version scheme."""
    return _RESOLVERS[ecosystem.version_scheme]


__all__ = [
    "VersionResolver",
    "SemverResolver",
    "Pep440Resolver",
    "resolver_for",
]
