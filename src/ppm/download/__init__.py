"""Concurrent download layer with an in-memory byte cache."""

from .cache import (
    ApproximateLRUPolicy,
    CacheEntry,
    CacheMetadata,
    DownloadCache,
    EvictionPolicy,
    LFUPolicy,
    LRUPolicy,
    eviction_policy,
)
from .downloader import (
    BatchOptimizer,
    DownloadProgress,
    DownloadRequest,
    DownloadResult,
    ParallelDownloader,
    cache_key_for,
)

__all__ = [
    "ApproximateLRUPolicy",
    "BatchOptimizer",
    "CacheEntry",
    "CacheMetadata",
    "DownloadCache",
    "DownloadProgress",
    "DownloadRequest",
    "DownloadResult",
    "EvictionPolicy",
    "LFUPolicy",
    "LRUPolicy",
    "ParallelDownloader",
    "cache_key_for",
    "eviction_policy",
]
