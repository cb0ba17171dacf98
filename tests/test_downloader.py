"""Tests for the parallel downloader."""

import asyncio

import pytest

aiohttp_mod = pytest.importorskip("aiohttp")

from ppm.common.integrity import sha256_hex, sri_from_sha256_hex
from ppm.download import (
    BatchOptimizer,
    CacheMetadata,
    DownloadCache,
    DownloadProgress,
    DownloadRequest,
    ParallelDownloader,
    cache_key_for,
)
from ppm.errors import DownloadError, IntegrityError
from ppm.models.dependency import ResolvedDependency
from ppm.models.ecosystem import Ecosystem


def _integrity(data):
    return sri_from_sha256_hex(sha256_hex(data))


class FakeFetch:
    """Stands in for the network: returns url-derived bytes and tracks concurrency."""

    def __init__(self, delay=0.01, fail=()):
        self.delay = delay
        self.fail = set(fail)
        self.calls = []
        self.in_flight = 0
        self.peak = 0

    async def __call__(self, cache_key, url):
        self.calls.append(cache_key)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if cache_key in self.fail:
                raise DownloadError(cache_key, url, "HTTP 404")
            return url.encode("utf-8")
        finally:
            self.in_flight -= 1


@pytest.fixture
def fetch():
    return FakeFetch()


def _downloader(fetch, **kwargs):
    downloader = ParallelDownloader(cache=DownloadCache(max_size=1024 * 1024), **kwargs)
    downloader._fetch = fetch
    return downloader


class TestDownloadSingle:
    """Cache-first single downloads."""

    def test_second_download_is_served_from_cache(self, fetch):
        downloader = _downloader(fetch)

        async def run():
            first = await downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a.tgz")
            second = await downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a.tgz")
            return first, second

        first, second = asyncio.run(run())
        assert first == second == b"https://registry.invalid/a.tgz"
        assert fetch.calls == ["npm:a@1.0.0"]

    def test_one_download_counts_one_miss(self, fetch):
        downloader = _downloader(fetch)

        async def run():
            await downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a")
            await downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a")

        asyncio.run(run())
        stats = downloader.cache_stats()
        assert stats["misses"] == 1
        assert stats["hits"] == 1
        assert stats["hit_ratio"] == 0.5

    def test_missing_session_is_a_download_error(self, monkeypatch):
        downloader = ParallelDownloader(cache=DownloadCache(max_size=1024))

        async def no_session():
            return None

        monkeypatch.setattr(downloader, "start", no_session)

        with pytest.raises(DownloadError, match="session is not available"):
            asyncio.run(downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a"))

    def test_integrity_mismatch_is_rejected_and_not_cached(self, fetch):
        downloader = _downloader(fetch)
        meta = CacheMetadata("a", "1.0.0", "npm", integrity=_integrity(b"something else"))

        with pytest.raises(IntegrityError, match="integrity check failed"):
            asyncio.run(downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a.tgz", meta))
        assert not downloader.cache.contains("npm:a@1.0.0")

    def test_integrity_match(self, fetch):
        url = "https://registry.invalid/a.tgz"
        downloader = _downloader(fetch)
        meta = CacheMetadata("a", "1.0.0", "npm", integrity=_integrity(url.encode("utf-8")))

        assert asyncio.run(downloader.download_single("npm:a@1.0.0", url, meta)) == url.encode("utf-8")

    def test_verification_can_be_disabled(self, fetch):
        downloader = _downloader(fetch, verify=False)
        meta = CacheMetadata("a", "1.0.0", "npm", integrity=_integrity(b"other"))
        assert asyncio.run(downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a", meta))

    def test_no_progress_left_behind(self, fetch):
        downloader = _downloader(fetch)
        asyncio.run(downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a"))
        assert downloader.get_all_progress() == {}
        assert downloader.get_progress("npm:a@1.0.0") is None


class TestDownloadParallel:
    """Bounded-concurrency batches."""

    def test_concurrency_is_bounded(self, fetch):
        """No more than max_concurrent fetches run at once."""
        downloader = _downloader(fetch, max_concurrent=2)
        requests = [DownloadRequest(f"npm:p{i}@1.0.0", f"https://registry.invalid/p{i}") for i in range(8)]

        results = asyncio.run(downloader.download_parallel(requests))

        assert all(r.ok for r in results)
        assert fetch.peak == 2
        assert len(fetch.calls) == 8

    def test_results_keep_request_order(self, fetch):
        downloader = _downloader(fetch, max_concurrent=4)
        keys = [f"npm:p{i}@1.0.0" for i in range(5)]

        results = asyncio.run(downloader.download_parallel(
            [(k, f"https://registry.invalid/{k}", None) for k in keys]
        ))

        assert [r.key for r in results] == keys
        assert results[3].data == b"https://registry.invalid/npm:p3@1.0.0"

    def test_failures_are_per_request(self):
        """A failed download does not affect the rest of the batch."""
        fetch = FakeFetch(fail={"npm:bad@1.0.0"})
        downloader = _downloader(fetch)

        results = asyncio.run(downloader.download_parallel([
            DownloadRequest("npm:good@1.0.0", "https://registry.invalid/good"),
            DownloadRequest("npm:bad@1.0.0", "https://registry.invalid/bad"),
        ]))

        assert results[0].ok and results[0].data
        assert not results[1].ok
        assert results[1].data is None
        assert results[1].error.reason == "HTTP 404"

    def test_duplicate_keys_fetch_once_with_single_permit(self, fetch):
        """Waiters re-check the cache after acquiring the permit."""
        downloader = _downloader(fetch, max_concurrent=1)
        requests = [DownloadRequest("npm:a@1.0.0", "https://registry.invalid/a")] * 3

        results = asyncio.run(downloader.download_parallel(requests))

        assert all(r.ok for r in results)
        assert fetch.calls == ["npm:a@1.0.0"]

    def test_session_lifecycle(self):
        async def run():
            async with ParallelDownloader() as downloader:
                assert downloader._session is not None
            return downloader

        downloader = asyncio.run(run())
        assert downloader._session is None

    def test_cache_helpers(self, fetch):
        downloader = _downloader(fetch)
        asyncio.run(downloader.download_single("npm:a@1.0.0", "https://registry.invalid/a"))
        assert downloader.cache_stats()["total_entries"] == 1
        assert downloader.clear_expired_cache() == 0
        downloader.clear_cache()
        assert downloader.cache_stats()["total_entries"] == 0


class TestProgressAndBatching:
    def test_progress(self):
        progress = DownloadProgress("a", total_bytes=200)
        progress.update(50)
        assert progress.progress_percentage() == 25.0
        assert not progress.is_complete()
        progress.update(150)
        assert progress.is_complete()

    def test_progress_without_size(self):
        progress = DownloadProgress("a")
        progress.update(10)
        assert progress.progress_percentage() is None
        assert not progress.is_complete()

    def test_cache_key_and_grouping(self):
        npm_dep = ResolvedDependency.create("left-pad", "1.3.0", Ecosystem.JAVASCRIPT, "a" * 64, "sha256-x")
        py_dep = ResolvedDependency.create("six", "1.16.0", Ecosystem.PYTHON, "b" * 64, "sha256-y")

        assert cache_key_for(npm_dep) == "npm:left-pad@1.3.0"
        assert cache_key_for(py_dep) == "pypi:six@1.16.0"
        groups = BatchOptimizer.group_by_ecosystem([npm_dep, py_dep])
        assert groups[Ecosystem.PYTHON] == [py_dep]
        assert BatchOptimizer.prioritize([py_dep, npm_dep]) == [npm_dep, py_dep]

    @pytest.mark.parametrize("total,limit,expected", [(0, 4, 0), (3, 4, 3), (20, 4, 8), (6, 4, 6)])
    def test_batch_size(self, total, limit, expected):
        assert BatchOptimizer.calculate_batch_size(total, limit) == expected
