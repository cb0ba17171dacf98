"""Bounded-concurrency package downloader backed by aiohttp."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import aiohttp

from ..common.integrity import verify_integrity
from ..common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from ..constants import Constants
from ..errors import DownloadError, IntegrityError
from ..models.dependency import ResolvedDependency
from ..models.ecosystem import Ecosystem
from .cache import CacheMetadata, DownloadCache

logger = logging.getLogger(__name__)


@dataclass
class DownloadProgress:
    """Progress snapshot of one in-flight download."""

    package_name: str
    total_bytes: Optional[int] = None
    downloaded_bytes: int = 0
    start_time: float = field(default_factory=time.monotonic)
    speed_bps: float = 0.0
    eta_seconds: Optional[float] = None

    def update(self, chunk_size: int) -> None:
        self.downloaded_bytes += chunk_size
        elapsed = time.monotonic() - self.start_time
        if elapsed > 0:
            self.speed_bps = self.downloaded_bytes / elapsed
        if self.total_bytes is not None and self.speed_bps > 0:
            self.eta_seconds = max(self.total_bytes - self.downloaded_bytes, 0) / self.speed_bps

    def progress_percentage(self) -> Optional[float]:
        """Percent complete, or None while the size is unknown."""
        if not self.total_bytes:
            return None
        return min(100.0, self.downloaded_bytes * 100.0 / self.total_bytes)

    def is_complete(self) -> bool:
        return self.total_bytes is not None and self.downloaded_bytes >= self.total_bytes


@dataclass(frozen=True)
class DownloadRequest:
    key: str
    url: str
    metadata: Optional[CacheMetadata] = None


@dataclass
class DownloadResult:
    """Outcome of one download in a batch: data or error, never both."""

    key: str
    data: Optional[bytes] = None
    error: Optional[DownloadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


RequestLike = Union[DownloadRequest, Tuple[str, str, Optional[CacheMetadata]]]


class ParallelDownloader:
    """Downloads package archives with a shared cache and a concurrency cap.

    Args:
        max_concurrent: Maximum simultaneous network downloads.
        cache: Byte cache; a default-sized DownloadCache when omitted.
        timeout: Per-request timeout in seconds.
        verify: Reject data that does not match metadata.integrity.
    """

    def __init__(
        self,
        max_concurrent: Optional[int] = None,
        cache: Optional[DownloadCache] = None,
        timeout: Optional[int] = None,
        verify: bool = True,
    ):
        self.max_concurrent = max_concurrent or Constants.MAX_CONCURRENT_DOWNLOADS
        self.cache = cache if cache is not None else DownloadCache()
        self.verify = verify
        self._timeout = aiohttp.ClientTimeout(total=timeout or Constants.REQUEST_TIMEOUT)
        self._session: Optional[aiohttp.ClientSession] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None
        self._active: Dict[str, DownloadProgress] = {}
        self._active_lock = threading.Lock()

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=self.max_concurrent)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                headers={"User-Agent": Constants.USER_AGENT},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "ParallelDownloader":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _permits(self) -> asyncio.Semaphore:
        """Semaphore bound to the running loop."""
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._semaphore_loop = loop
        return self._semaphore

    async def download_single(
        self, cache_key: str, url: str, metadata: Optional[CacheMetadata] = None
    ) -> bytes:
        """Return the bytes for cache_key, downloading from url on a cache miss.

        Raises:
            DownloadError: On HTTP errors, timeouts or integrity mismatch.
        """
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        async with self._permits():
            # A task holding the permit before us may have fetched the same key;
            # the miss is already counted
            entry = self.cache.get_entry(cache_key)
            if entry is not None:
                return entry.data

            name = metadata.name if metadata else cache_key
            with self._active_lock:
                self._active[cache_key] = DownloadProgress(package_name=name)
            try:
                with Timer() as t:
                    data = await self._fetch(cache_key, url)
            finally:
                with self._active_lock:
                    self._active.pop(cache_key, None)

            if self.verify and metadata is not None and metadata.integrity:
                if not verify_integrity(data, metadata.integrity):
                    raise IntegrityError(cache_key, safe_url(url), "integrity check failed")

            self.cache.put(cache_key, data, metadata)

        if is_debug_enabled(logger):
            logger.debug(
                "Download complete",
                extra=extra_context(
                    event="download",
                    component="downloader",
                    action="download_single",
                    outcome="success",
                    target=safe_url(url),
                    bytes=len(data),
                    duration_ms=t.duration_ms(),
                ),
            )
        return data

    async def _fetch(self, cache_key: str, url: str) -> bytes:
        """Stream url into memory, publishing progress as chunks arrive."""
        if self._session is None:
            await self.start()
        session = self._session
        if session is None:
            raise DownloadError(cache_key, safe_url(url), "HTTP session is not available")
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise DownloadError(cache_key, safe_url(url), f"HTTP {response.status}")
                with self._active_lock:
                    progress = self._active.get(cache_key)
                    if progress is not None:
                        progress.total_bytes = response.content_length
                chunks: List[bytes] = []
                async for chunk in response.content.iter_chunked(Constants.DOWNLOAD_CHUNK_SIZE):
                    chunks.append(chunk)
                    with self._active_lock:
                        progress = self._active.get(cache_key)
                        if progress is not None:
                            progress.update(len(chunk))
                return b"".join(chunks)
        except asyncio.TimeoutError as exc:
            raise DownloadError(cache_key, safe_url(url), "timed out") from exc
        except aiohttp.ClientError as exc:
            raise DownloadError(cache_key, safe_url(url), str(exc) or type(exc).__name__) from exc

    async def download_parallel(self, requests: Sequence[RequestLike]) -> List[DownloadResult]:
        """Download a batch; each failure is reported in its own result.

        Results are returned in request order.
        """
        normalized = [r if isinstance(r, DownloadRequest) else DownloadRequest(*r) for r in requests]
        outcomes = await asyncio.gather(
            *(self.download_single(r.key, r.url, r.metadata) for r in normalized),
            return_exceptions=True,
        )
        results = []
        for req, outcome in zip(normalized, outcomes):
            if isinstance(outcome, DownloadError):
                results.append(DownloadResult(req.key, error=outcome))
            elif isinstance(outcome, BaseException):
                results.append(DownloadResult(
                    req.key, error=DownloadError(req.key, safe_url(req.url), repr(outcome))
                ))
            else:
                results.append(DownloadResult(req.key, data=outcome))
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning("%d of %d downloads failed", failed, len(results))
        return results

    def get_progress(self, cache_key: str) -> Optional[DownloadProgress]:
        with self._active_lock:
            progress = self._active.get(cache_key)
            return dataclasses.replace(progress) if progress is not None else None

    def get_all_progress(self) -> Dict[str, DownloadProgress]:
        with self._active_lock:
            return {k: dataclasses.replace(p) for k, p in self._active.items()}

    def cache_stats(self):
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def clear_expired_cache(self) -> int:
        return self.cache.clear_expired()


def cache_key_for(dep: ResolvedDependency) -> str:
    """Download cache key, e.g. ``npm:react@18.2.0``."""
    return f"{dep.ecosystem.registry_key}:{dep.name}@{dep.version}"


class BatchOptimizer:
    """Helpers for ordering and sizing download batches."""

    @staticmethod
    def group_by_ecosystem(deps: Iterable[ResolvedDependency]) -> Dict[Ecosystem, List[ResolvedDependency]]:
        groups: Dict[Ecosystem, List[ResolvedDependency]] = {}
        for dep in deps:
            groups.setdefault(dep.ecosystem, []).append(dep)
        return groups

    @staticmethod
    def prioritize(deps: Iterable[ResolvedDependency]) -> List[ResolvedDependency]:
        """JavaScript packages first, then alphabetical by name."""
        return sorted(deps, key=lambda d: (d.ecosystem is not Ecosystem.JAVASCRIPT, d.name))

    @staticmethod
    def calculate_batch_size(total: int, max_concurrent: int) -> int:
        """Batch size that keeps every permit busy without oversized batches."""
        if total <= 0:
            return 0
        if total <= max_concurrent:
            return total
        return min(total, max_concurrent * 2)
