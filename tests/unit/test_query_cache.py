"""Unit tests for classtracker.query_cache."""

from __future__ import annotations

import asyncio

import pytest

from classtracker.errors import ClassTrackerError, ErrorCode
from classtracker.query_cache import QueryCache, QueryOptions


class CountingFetcher:
    """Fetcher that returns queued values (or raises queued errors) and counts calls."""

    def __init__(self, *results: object, delay: float = 0.0) -> None:
        self._results = list(results)
        self.delay = delay
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _rejected() -> ClassTrackerError:
    return ClassTrackerError(ErrorCode.SERVER_REJECTED, "HTTP 500", recoverable=True)


# ---------------------------------------------------------------------------
# fetch
# ---------------------------------------------------------------------------


class TestFetch:
    async def test_fresh_entry_is_served_without_fetching(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("page-1")
        assert await cache.fetch("k", fetcher) == "page-1"
        assert await cache.fetch("k", fetcher) == "page-1"
        assert fetcher.calls == 1

    async def test_concurrent_fetches_are_deduplicated(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("page-1", delay=0.01)
        results = await asyncio.gather(*(cache.fetch("k", fetcher) for _ in range(5)))
        assert results == ["page-1"] * 5
        assert fetcher.calls == 1

    async def test_force_refetches_fresh_entry(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", "v2")
        await cache.fetch("k", fetcher)
        assert await cache.fetch("k", fetcher, force=True) == "v2"
        assert fetcher.calls == 2

    async def test_force_joins_in_flight_fetch(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", delay=0.01)
        await asyncio.gather(cache.fetch("k", fetcher), cache.fetch("k", fetcher, force=True))
        assert fetcher.calls == 1

    async def test_different_keys_are_separate_entries(self, cache: QueryCache) -> None:
        a = CountingFetcher("a")
        b = CountingFetcher("b")
        assert await cache.fetch(("catalog", 1), a) == "a"
        assert await cache.fetch(("catalog", 2), b) == "b"
        assert cache.peek(("catalog", 1)).value == "a"

    async def test_failure_keeps_previous_value(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("good", _rejected())
        await cache.fetch("k", fetcher)

        with pytest.raises(ClassTrackerError) as exc_info:
            await cache.fetch("k", fetcher, force=True)
        assert exc_info.value.code == ErrorCode.SERVER_REJECTED

        result = cache.peek("k")
        assert result.value == "good"
        assert result.error is not None
        assert result.is_loading is False

    async def test_failure_without_previous_value(self, cache: QueryCache) -> None:
        with pytest.raises(ClassTrackerError):
            await cache.fetch("k", CountingFetcher(_rejected()))
        entry = cache.get("k")
        assert entry is not None
        assert entry.has_value is False
        assert entry.error is not None

    async def test_success_after_failure_clears_error(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher(_rejected(), "recovered")
        with pytest.raises(ClassTrackerError):
            await cache.fetch("k", fetcher)
        assert await cache.fetch("k", fetcher) == "recovered"
        assert cache.peek("k").error is None

    async def test_cancelled_caller_does_not_cancel_shared_fetch(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", delay=0.02)
        first = asyncio.create_task(cache.fetch("k", fetcher))
        second = asyncio.create_task(cache.fetch("k", fetcher))
        await asyncio.sleep(0)
        first.cancel()
        assert await second == "v1"
        assert fetcher.calls == 1


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


class TestResolve:
    async def test_missing_entry_starts_background_fetch(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", delay=0.01)
        result = cache.resolve("k", fetcher)
        assert result.is_loading is True
        assert result.value is None

        await cache.fetch("k", fetcher)
        assert cache.resolve("k", fetcher).value == "v1"
        assert fetcher.calls == 1

    async def test_repeated_resolve_issues_one_request(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", delay=0.01)
        for _ in range(3):
            cache.resolve("k", fetcher)
        await cache.fetch("k", fetcher)
        cache.resolve("k", fetcher)
        assert fetcher.calls == 1

    async def test_errored_entry_is_not_retried_by_resolve(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher(_rejected())
        with pytest.raises(ClassTrackerError):
            await cache.fetch("k", fetcher)
        result = cache.resolve("k", fetcher)
        assert result.is_loading is False
        assert result.error is not None
        assert fetcher.calls == 1


# ---------------------------------------------------------------------------
# watch / polling
# ---------------------------------------------------------------------------


class TestWatch:
    async def test_polls_while_watched(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v")
        watch = cache.watch("k", fetcher, poll_interval=0.01)
        await asyncio.sleep(0.055)
        watch.close()
        assert fetcher.calls >= 3

    async def test_polling_stops_when_last_watch_closes(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v")
        first = cache.watch("k", fetcher, poll_interval=0.01)
        second = cache.watch("k", fetcher, poll_interval=0.01)
        assert cache.watcher_count("k") == 2

        first.close()
        assert cache.is_polling("k")
        second.close()
        assert not cache.is_polling("k")

        calls = fetcher.calls
        await asyncio.sleep(0.03)
        assert fetcher.calls == calls

    async def test_close_is_idempotent(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v")
        keep = cache.watch("k", fetcher)
        watch = cache.watch("k", fetcher)
        watch.close()
        watch.close()
        assert cache.watcher_count("k") == 1
        keep.close()

    async def test_poll_failure_keeps_polling(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher(_rejected(), "ok")
        with cache.watch("k", fetcher, poll_interval=0.01):
            await asyncio.sleep(0.035)
        assert fetcher.calls >= 2
        assert cache.peek("k").value == "ok"

    async def test_unexpected_poll_error_keeps_polling(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher(RuntimeError("boom"), "ok")
        with cache.watch("k", fetcher, poll_interval=0.01):
            await asyncio.sleep(0.035)
            assert cache.is_polling("k")
        assert fetcher.calls >= 2
        assert cache.peek("k").value == "ok"


# ---------------------------------------------------------------------------
# invalidate
# ---------------------------------------------------------------------------


class TestInvalidate:
    async def test_refetches_when_watched(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", "v2")
        with cache.watch("k", fetcher):
            await cache.fetch("k", fetcher)
            await cache.invalidate("k")
            assert cache.peek("k").value == "v2"
        assert fetcher.calls == 2

    async def test_only_marks_stale_when_unwatched(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", "v2")
        await cache.fetch("k", fetcher)
        await cache.invalidate("k")

        entry = cache.get("k")
        assert entry is not None
        assert entry.stale is True
        assert fetcher.calls == 1
        # Next read fetches.
        assert await cache.fetch("k", fetcher) == "v2"

    async def test_waits_out_in_flight_fetch_then_refetches(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("before-write", "after-write", delay=0.01)
        with cache.watch("k", fetcher):
            pending = asyncio.create_task(cache.fetch("k", fetcher))
            await asyncio.sleep(0)
            await cache.invalidate("k")
            await pending
            assert cache.peek("k").value == "after-write"
        assert fetcher.calls == 2

    async def test_refetch_failure_is_recorded_not_raised(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", _rejected())
        with cache.watch("k", fetcher):
            await cache.fetch("k", fetcher)
            await cache.invalidate("k")
        result = cache.peek("k")
        assert result.value == "v1"
        assert result.error is not None

    async def test_unknown_key_is_noop(self, cache: QueryCache) -> None:
        await cache.invalidate("never-seen")
        assert cache.get("never-seen") is None


# ---------------------------------------------------------------------------
# clear
# ---------------------------------------------------------------------------


class TestClear:
    async def test_drops_entries_and_pollers(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v")
        cache.watch("k", fetcher, poll_interval=0.01)
        await cache.fetch("k", fetcher)

        cache.clear()

        assert cache.get("k") is None
        assert not cache.is_polling("k")

    async def test_pending_load_returns_empty_snapshot(self, cache: QueryCache) -> None:
        observer = cache.observe()
        pending = asyncio.create_task(observer.load("k", CountingFetcher("v", delay=0.05)))
        await asyncio.sleep(0)

        cache.clear()
        result = await pending

        assert result.value is None
        assert result.is_loading is False
        assert cache.get("k") is None

    async def test_pending_invalidate_returns_quietly(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v1", "v2", delay=0.02)
        cache.watch("k", fetcher)
        await cache.fetch("k", fetcher)
        pending = asyncio.create_task(cache.invalidate("k"))
        await asyncio.sleep(0.005)

        cache.clear()
        await pending

        assert cache.get("k") is None

    async def test_cancelling_the_caller_still_cancels_it(self, cache: QueryCache) -> None:
        observer = cache.observe()
        pending = asyncio.create_task(observer.load("k", CountingFetcher("v", delay=0.05)))
        await asyncio.sleep(0)

        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        cache.clear()

    async def test_discard_keeps_watched_keys(self, cache: QueryCache) -> None:
        fetcher = CountingFetcher("v")
        await cache.fetch("watched", fetcher)
        await cache.fetch("idle", fetcher)
        with cache.watch("watched", fetcher):
            assert cache.discard("watched") is False
            assert cache.discard("idle") is True
            assert cache.get("watched") is not None
        assert cache.get("idle") is None


# ---------------------------------------------------------------------------
# QueryObserver
# ---------------------------------------------------------------------------


class TestQueryObserver:
    async def test_keeps_previous_value_while_new_key_loads(self, cache: QueryCache) -> None:
        observer = cache.observe(QueryOptions(keep_previous_value=True))
        await observer.load("page-1", CountingFetcher("first"))

        slow = CountingFetcher("second", delay=0.01)
        result = observer.resolve("page-2", slow)
        assert result.is_loading is True
        assert result.value == "first"
        assert result.is_previous is True
        # The previous value is presentation only; it is never stored under the new key.
        assert cache.peek("page-2").value is None

        result = await observer.load("page-2", slow)
        assert result.value == "second"
        assert result.is_previous is False

    async def test_without_keep_previous_shows_nothing_while_loading(
        self, cache: QueryCache
    ) -> None:
        observer = cache.observe()
        await observer.load("page-1", CountingFetcher("first"))
        result = observer.resolve("page-2", CountingFetcher("second", delay=0.01))
        assert result.is_loading is True
        assert result.value is None

    async def test_late_response_for_abandoned_key_is_discarded(self, cache: QueryCache) -> None:
        observer = cache.observe(QueryOptions(keep_previous_value=True))
        slow = CountingFetcher("stale-search", delay=0.03)
        fast = CountingFetcher("new-search", delay=0.005)

        old = asyncio.create_task(observer.load("search-a", slow))
        await asyncio.sleep(0)
        new = asyncio.create_task(observer.load("search-b", fast))

        new_result = await new
        old_result = await old
        assert new_result.value == "new-search"
        # The slow response landed after the newer one; the observer still shows search-b.
        assert old_result.key == "search-b"
        assert old_result.value == "new-search"
        assert observer.snapshot().value == "new-search"

    async def test_switching_keys_releases_old_watch(self, cache: QueryCache) -> None:
        observer = cache.observe(QueryOptions(poll_interval=0.01))
        await observer.load("a", CountingFetcher("a"))
        assert cache.is_polling("a")
        await observer.load("b", CountingFetcher("b"))
        assert not cache.is_polling("a")
        assert cache.is_polling("b")
        observer.close()
        assert not cache.is_polling("b")

    async def test_load_failure_surfaces_error_in_snapshot(self, cache: QueryCache) -> None:
        observer = cache.observe()
        result = await observer.load("k", CountingFetcher(_rejected()))
        assert result.value is None
        assert result.is_loading is False
        assert result.error is not None
        assert result.error.code == ErrorCode.SERVER_REJECTED

    async def test_retain_bounds_abandoned_keys(self, cache: QueryCache) -> None:
        observer = cache.observe(QueryOptions(retain=1))
        for key in ("a", "b", "c"):
            await observer.load(key, CountingFetcher(key))

        assert cache.get("a") is None
        assert cache.peek("b").value == "b"
        assert cache.peek("c").value == "c"

    async def test_returning_to_a_key_keeps_it_cached(self, cache: QueryCache) -> None:
        observer = cache.observe(QueryOptions(retain=1))
        a = CountingFetcher("a")
        await observer.load("a", a)
        await observer.load("b", CountingFetcher("b"))
        await observer.load("a", a)
        await observer.load("c", CountingFetcher("c"))

        # "b" was the oldest abandoned key; "a" was revisited.
        assert cache.get("b") is None
        assert cache.peek("a").value == "a"
        assert a.calls == 1
