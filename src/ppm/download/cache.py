"""Byte cache for downloaded archives with TTL and pluggable eviction."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..constants import Constants
from ..errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class CacheMetadata:
    """What a cached blob is."""

    name: str
    version: str
    ecosystem: str
    content_type: str = "application/octet-stream"
    integrity: Optional[str] = None


@dataclass
class CacheEntry:
    """A single cached download with TTL."""

    data: bytes
    ttl: float
    metadata: Optional[CacheMetadata] = None
    cached_at: float = field(default_factory=time.time)
    access_count: int = 1
    size: int = 0
    last_accessed: float = 0.0

    def __post_init__(self) -> None:
        self.size = len(self.data)
        if not self.last_accessed:
            self.last_accessed = self.cached_at

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this entry has expired."""
        now = time.time() if now is None else now
        return now > self.cached_at + self.ttl

    def touch(self) -> None:
        self.access_count += 1
        self.last_accessed = time.time()


class EvictionPolicy(ABC):
    """Chooses which entry to evict when the cache needs room."""

    name = ""

    @abstractmethod
    def sort_key(self, entry: CacheEntry) -> Any:
        """Entries with the smallest key are evicted first."""

    def select_victim(self, entries: Dict[str, CacheEntry]) -> Optional[str]:
        if not entries:
            return None
        return min(entries, key=lambda k: self.sort_key(entries[k]))


class ApproximateLRUPolicy(EvictionPolicy):
    """Evict the least re-requested entry, oldest first among ties.

    access_count only grows on cache hits, so blobs that were stored but
    never asked for again go first.
    """

    name = "approx-lru"

    def sort_key(self, entry: CacheEntry) -> Any:
        return (entry.access_count, entry.cached_at)


class LRUPolicy(EvictionPolicy):
    """Evict the entry that was used longest ago."""

    name = "lru"

    def sort_key(self, entry: CacheEntry) -> Any:
        return entry.last_accessed


class LFUPolicy(EvictionPolicy):
    """Evict the least frequently used entry, least recent among ties."""

    name = "lfu"

    def sort_key(self, entry: CacheEntry) -> Any:
        return (entry.access_count, entry.last_accessed)


_POLICIES = {cls.name: cls for cls in (ApproximateLRUPolicy, LRUPolicy, LFUPolicy)}


def eviction_policy(name: str) -> EvictionPolicy:
    """Build an eviction policy by name ("approx-lru", "lru" or "lfu")."""
    try:
        return _POLICIES[name]()
    except KeyError as exc:
        raise ValidationError(f"Unknown eviction policy: {name}") from exc


class DownloadCache:
    """Size-bounded TTL cache of downloaded bytes.

    The cache never holds more than ``max_size`` bytes. An entry larger than
    the whole cache is simply not stored.

    Args:
        max_size: Capacity in bytes.
        default_ttl: TTL in seconds for put().
        policy: Eviction strategy; approximate LRU by default.
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        default_ttl: Optional[float] = None,
        policy: Optional[EvictionPolicy] = None,
    ):
        self.max_size = max_size if max_size is not None else Constants.DOWNLOAD_CACHE_SIZE_MB * 1024 * 1024
        self.default_ttl = default_ttl if default_ttl is not None else Constants.DOWNLOAD_CACHE_TTL_SEC
        self.policy = policy or ApproximateLRUPolicy()
        self._entries: Dict[str, CacheEntry] = {}
        self._current_size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._lock = threading.Lock()

    @property
    def current_size(self) -> int:
        with self._lock:
            return self._current_size

    def get(self, key: str) -> Optional[bytes]:
        """Return cached bytes, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired():
                self._remove(key)
                self._misses += 1
                return None
            entry.touch()
            self._hits += 1
            return entry.data

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired():
                return None
            return entry

    def contains(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired()

    def put(self, key: str, data: bytes, metadata: Optional[CacheMetadata] = None) -> bool:
        return self.put_with_ttl(key, data, self.default_ttl, metadata)

    def put_with_ttl(
        self, key: str, data: bytes, ttl: float, metadata: Optional[CacheMetadata] = None
    ) -> bool:
        """Cache data for ``ttl`` seconds, evicting others as needed.

        Returns:
            bool: False when the entry cannot fit even in an empty cache.
        """
        entry = CacheEntry(data=data, ttl=ttl, metadata=metadata)
        with self._lock:
            if entry.size > self.max_size:
                logger.debug("Not caching %s: %d bytes exceeds capacity %d", key, entry.size, self.max_size)
                return False
            if key in self._entries:
                self._remove(key)
            while self._current_size + entry.size > self.max_size and self._entries:
                victim = self.policy.select_victim(self._entries)
                self._remove(victim)
                self._evictions += 1
            self._entries[key] = entry
            self._current_size += entry.size
            return True

    def remove(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def clear_expired(self) -> int:
        """Remove expired entries and return how many were dropped."""
        with self._lock:
            now = time.time()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                self._remove(key)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._current_size = 0

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "total_entries": len(self._entries),
                "total_size_bytes": self._current_size,
                "max_size_bytes": self.max_size,
                "hit_ratio": (self._hits / lookups) if lookups else 0.0,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "policy": self.policy.name,
            }

    def _remove(self, key: str) -> None:
        """Remove an entry and update byte count. Caller holds the lock."""
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._current_size -= entry.size
