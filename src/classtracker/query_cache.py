"""In-memory keyed cache for asynchronous reads.

The store keeps one ``CacheEntry`` per key and guarantees that at most one
fetch per key is in flight: concurrent callers join the running task instead
of issuing a duplicate request. Entries track freshness (``stale``) and the
last failure (``error``); a failed fetch never overwrites the value of an
earlier success.

Consumers register interest with ``watch()``. Interest does two things: it
keeps a poller alive for keys that asked for one, and it makes
``invalidate()`` refetch immediately instead of waiting for the next read.

``QueryObserver`` is the per-consumer view on top of the store. It tracks
which key its consumer currently looks at, hides responses for keys it has
moved away from, and optionally keeps showing the previous key's value while
the new one loads.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, replace
from typing import Any

import structlog

from classtracker.errors import ClassTrackerError

log = structlog.get_logger()

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class QueryOptions:
    keep_previous_value: bool = False
    poll_interval: float | None = None  # seconds; None disables polling
    retain: int | None = None  # abandoned keys an observer keeps cached; None keeps all


@dataclass(frozen=True)
class QueryResult:
    """Snapshot of one key as seen by a consumer."""

    key: Hashable | None = None
    value: Any = None
    is_loading: bool = False
    error: ClassTrackerError | None = None
    is_previous: bool = False  # value belongs to the consumer's previous key


@dataclass
class CacheEntry:
    key: Hashable
    value: Any = None
    has_value: bool = False
    stale: bool = True
    error: ClassTrackerError | None = None
    updated_at: float | None = None  # loop.time() of the last success
    task: asyncio.Task[Any] | None = None

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def fresh(self) -> bool:
        return self.has_value and not self.stale


def _key_label(key: Hashable) -> str:
    return repr(key)


def evicted() -> bool:
    """True when a ``CancelledError`` came from an evicted fetch.

    ``evict()`` cancels the shared fetch task, which surfaces as
    ``CancelledError`` in every caller waiting on it. Only a caller whose own
    task was cancelled should let that propagate.
    """
    task = asyncio.current_task()
    return task is None or task.cancelling() == 0


def _retrieve_task_result(task: asyncio.Task[Any]) -> None:
    # Marks the exception as retrieved. ClassTrackerErrors were already logged
    # and recorded on the entry; anything else is a bug and is logged loudly.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, ClassTrackerError):
        log.error("query_task_crashed", task=task.get_name(), exc_info=exc)


class Watch:
    """Handle for one consumer's interest in a key. Close it to release."""

    def __init__(self, cache: QueryCache, key: Hashable) -> None:
        self._cache = cache
        self.key = key
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._cache._release(self.key)

    def __enter__(self) -> Watch:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class QueryCache:
    def __init__(self) -> None:
        self._entries: dict[Hashable, CacheEntry] = {}
        self._fetchers: dict[Hashable, Fetcher] = {}
        self._watchers: dict[Hashable, int] = {}
        self._pollers: dict[Hashable, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: Hashable) -> CacheEntry | None:
        return self._entries.get(key)

    def peek(self, key: Hashable) -> QueryResult:
        """Current state of ``key`` without triggering any fetch."""
        entry = self._entries.get(key)
        if entry is None:
            return QueryResult(key=key)
        return QueryResult(
            key=key,
            value=entry.value,
            is_loading=entry.in_flight,
            error=entry.error,
        )

    def resolve(self, key: Hashable, fetcher: Fetcher) -> QueryResult:
        """Return the current snapshot of ``key``, starting a fetch if one is needed.

        Fresh entries are served without calling ``fetcher``. Missing or
        invalidated entries get a background fetch unless one is already
        running. Entries whose last fetch failed are not retried here; an
        explicit ``fetch()``, ``invalidate()`` or poll retries them.
        Must be called from inside a running event loop.
        """
        entry = self._entries.get(key)
        needs_fetch = entry is None or (entry.stale and entry.error is None)
        if needs_fetch and not (entry is not None and entry.in_flight):
            self._start(key, fetcher)
        return self.peek(key)

    async def fetch(self, key: Hashable, fetcher: Fetcher, *, force: bool = False) -> Any:
        """Return the value for ``key``, fetching it if it is not fresh.

        ``force`` skips the freshness check but still joins a fetch that is
        already in flight. Raises ``ClassTrackerError`` if the fetch fails.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.fresh and not force and not entry.in_flight:
            log.debug("query_cache_hit", key=_key_label(key))
            return entry.value
        task = self._start(key, fetcher)
        # Shielded so a cancelled caller does not cancel the fetch other callers share.
        return await asyncio.shield(task)

    def _start(self, key: Hashable, fetcher: Fetcher) -> asyncio.Task[Any]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = CacheEntry(key=key)
        self._fetchers[key] = fetcher
        if entry.in_flight:
            assert entry.task is not None
            log.debug("query_fetch_joined", key=_key_label(key))
            return entry.task

        task = asyncio.get_running_loop().create_task(
            self._run(entry, fetcher), name=f"query:{_key_label(key)}"
        )
        task.add_done_callback(_retrieve_task_result)
        entry.task = task
        return task

    async def _run(self, entry: CacheEntry, fetcher: Fetcher) -> Any:
        log.debug("query_fetch_started", key=_key_label(entry.key))
        try:
            value = await fetcher()
        except ClassTrackerError as exc:
            entry.error = exc
            entry.stale = True
            log.warning(
                "query_fetch_failed",
                key=_key_label(entry.key),
                code=exc.code.value,
                kept_previous=entry.has_value,
            )
            raise

        entry.value = value
        entry.has_value = True
        entry.stale = False
        entry.error = None
        entry.updated_at = asyncio.get_running_loop().time()
        log.debug("query_fetch_complete", key=_key_label(entry.key))
        return value

    # ------------------------------------------------------------------
    # Interest and polling
    # ------------------------------------------------------------------

    def watch(
        self, key: Hashable, fetcher: Fetcher, *, poll_interval: float | None = None
    ) -> Watch:
        """Register a consumer of ``key``; poll it every ``poll_interval`` seconds if set."""
        self._fetchers[key] = fetcher
        self._watchers[key] = self._watchers.get(key, 0) + 1
        if poll_interval is not None and key not in self._pollers:
            poller = asyncio.get_running_loop().create_task(
                self._poll(key, poll_interval), name=f"poll:{_key_label(key)}"
            )
            poller.add_done_callback(_retrieve_task_result)
            self._pollers[key] = poller
            log.debug("query_polling_started", key=_key_label(key), interval=poll_interval)
        return Watch(self, key)

    def watcher_count(self, key: Hashable) -> int:
        return self._watchers.get(key, 0)

    def is_polling(self, key: Hashable) -> bool:
        return key in self._pollers

    def _release(self, key: Hashable) -> None:
        remaining = self._watchers.get(key, 0) - 1
        if remaining > 0:
            self._watchers[key] = remaining
            return
        self._watchers.pop(key, None)
        poller = self._pollers.pop(key, None)
        if poller is not None:
            poller.cancel()
            log.debug("query_polling_stopped", key=_key_label(key))

    async def _poll(self, key: Hashable, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            fetcher = self._fetchers.get(key)
            if fetcher is None:
                return
            try:
                await self.fetch(key, fetcher, force=True)
            except ClassTrackerError:
                # Logged and recorded on the entry by _run; keep polling.
                continue
            except Exception as exc:
                log.warning("query_poll_failed", key=_key_label(key), error=repr(exc))
                continue

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def invalidate(self, key: Hashable) -> None:
        """Mark ``key`` stale and, if anyone is watching it, refetch now.

        A fetch that was already in flight may predate whatever made the
        entry stale, so it is awaited and then followed by a new one.
        Refetch failures are recorded on the entry, not raised.
        """
        entry = self._entries.get(key)
        if entry is not None:
            entry.stale = True
        log.debug("query_invalidated", key=_key_label(key))

        fetcher = self._fetchers.get(key)
        if fetcher is None or not self._watchers.get(key):
            return

        try:
            if entry is not None and entry.in_flight:
                assert entry.task is not None
                with contextlib.suppress(ClassTrackerError):
                    await asyncio.shield(entry.task)
            with contextlib.suppress(ClassTrackerError):
                await self.fetch(key, fetcher, force=True)
        except asyncio.CancelledError:
            if not evicted():
                raise
            log.debug("query_invalidate_evicted", key=_key_label(key))

    def evict(self, key: Hashable) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None and entry.in_flight:
            assert entry.task is not None
            entry.task.cancel()
        self._fetchers.pop(key, None)
        self._watchers.pop(key, None)
        poller = self._pollers.pop(key, None)
        if poller is not None:
            poller.cancel()

    def discard(self, key: Hashable) -> bool:
        """Evict ``key`` unless a consumer still watches it."""
        if self._watchers.get(key):
            return False
        self.evict(key)
        log.debug("query_discarded", key=_key_label(key))
        return True

    def clear(self) -> None:
        """Drop every entry and stop every poller. Used on session teardown."""
        for key in list(self._entries) + list(self._pollers):
            self.evict(key)
        self._fetchers.clear()
        self._watchers.clear()

    def observe(self, options: QueryOptions | None = None) -> QueryObserver:
        return QueryObserver(self, options or QueryOptions())


class QueryObserver:
    """One consumer's view of the cache.

    The observer looks at exactly one key at a time. Moving to a new key
    releases the watch on the old one; results that arrive for the old key
    afterwards stay in the cache but are never returned by this observer.
    """

    def __init__(self, cache: QueryCache, options: QueryOptions) -> None:
        self._cache = cache
        self._options = options
        self._key: Hashable | None = None
        self._watch: Watch | None = None
        self._previous: QueryResult | None = None
        self._abandoned: list[Hashable] = []  # oldest first

    @property
    def key(self) -> Hashable | None:
        return self._key

    @property
    def options(self) -> QueryOptions:
        return self._options

    def _observe(self, key: Hashable, fetcher: Fetcher) -> None:
        if key == self._key:
            return
        left = self._key
        if left is not None:
            current = self._cache.peek(left)
            if current.value is not None:
                self._previous = current
        if self._watch is not None:
            self._watch.close()
        self._key = key
        self._watch = self._cache.watch(key, fetcher, poll_interval=self._options.poll_interval)
        if left is not None:
            self._abandon(left)

    def _abandon(self, left: Hashable) -> None:
        retain = self._options.retain
        if retain is None:
            return
        for key in (left, self._key):
            if key in self._abandoned:
                self._abandoned.remove(key)
        self._abandoned.append(left)
        while len(self._abandoned) > retain:
            self._cache.discard(self._abandoned.pop(0))

    def resolve(self, key: Hashable, fetcher: Fetcher) -> QueryResult:
        """Switch to ``key`` and return its snapshot, fetching in the background if needed."""
        self._observe(key, fetcher)
        self._cache.resolve(key, fetcher)
        return self.snapshot()

    async def load(self, key: Hashable, fetcher: Fetcher, *, force: bool = False) -> QueryResult:
        """Switch to ``key``, wait for its value, and return the snapshot.

        If another ``load``/``resolve`` moved the observer to a different key
        while this one was waiting, the snapshot of the newer key is returned.
        """
        self._observe(key, fetcher)
        try:
            await self._cache.fetch(key, fetcher, force=force)
        except ClassTrackerError:
            # Recorded on the entry; the snapshot carries it as ``error``.
            pass
        except asyncio.CancelledError:
            if not evicted():
                raise
            log.debug("query_fetch_evicted", key=_key_label(key))
        if self._key != key:
            log.debug("query_result_discarded", key=_key_label(key))
        return self.snapshot()

    def snapshot(self) -> QueryResult:
        if self._key is None:
            return QueryResult()
        result = self._cache.peek(self._key)
        if (
            result.value is None
            and result.is_loading
            and self._options.keep_previous_value
            and self._previous is not None
        ):
            return replace(result, value=self._previous.value, is_previous=True)
        return result

    def close(self) -> None:
        if self._watch is not None:
            self._watch.close()
        self._watch = None
        self._key = None
        self._previous = None
        self._abandoned.clear()
