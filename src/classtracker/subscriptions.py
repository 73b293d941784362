"""Subscription index: which catalog entries the current user is subscribed to.

The index is derived state. It is rebuilt from scratch from every
subscription-list response and never patched locally, so it only ever
reflects something the server actually returned.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from classtracker.errors import ClassTrackerError
from classtracker.query_cache import evicted

if TYPE_CHECKING:
    from collections.abc import Hashable

    from classtracker.api import ApiClient
    from classtracker.identity import Identity
    from classtracker.models.catalog import EntryKey
    from classtracker.models.subscriptions import SubscriptionRecord
    from classtracker.query_cache import QueryCache, Watch

log = structlog.get_logger()

DEFAULT_POLL_INTERVAL_SECONDS = 60.0


class IndexStatus(StrEnum):
    NOT_FETCHED = "not_fetched"  # no identity, or nothing received yet
    FETCHED = "fetched"  # built from a server response (possibly empty)


def subscriptions_key(user_key: str) -> Hashable:
    return ("subscriptions", user_key)


class SubscriptionIndex:
    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._api = api
        self._cache = cache
        self._poll_interval = poll_interval
        self._user_key: str | None = None
        self._watch: Watch | None = None
        self._keys: frozenset[EntryKey] = frozenset()
        self._records: tuple[SubscriptionRecord, ...] = ()
        self._source: object = None  # the cached list the index was last built from
        self.status = IndexStatus.NOT_FETCHED

    @property
    def user_key(self) -> str | None:
        return self._user_key

    @property
    def cache_key(self) -> Hashable | None:
        return subscriptions_key(self._user_key) if self._user_key else None

    async def _fetch(self) -> list[SubscriptionRecord]:
        assert self._user_key is not None
        return await self._api.list_subscriptions(self._user_key)

    def start(self, identity: Identity) -> None:
        """Begin tracking ``identity``'s subscriptions: fetch now, then poll while started.

        Without a user key nothing is fetched and the index stays empty with
        status ``NOT_FETCHED``.
        """
        self.stop()
        if not identity.has_user_key:
            log.debug("subscription_index_skipped", reason="unauthenticated")
            return
        self._user_key = identity.user_key
        self._watch = self._cache.watch(
            self.cache_key, self._fetch, poll_interval=self._poll_interval
        )
        self._cache.resolve(self.cache_key, self._fetch)

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.close()
        self._watch = None
        self._user_key = None
        self._keys = frozenset()
        self._records = ()
        self._source = None
        self.status = IndexStatus.NOT_FETCHED

    async def refresh(self) -> frozenset[EntryKey]:
        """Fetch the list now and rebuild the index from it.

        On failure the index keeps whatever it was last built from (empty if
        nothing was ever received) and the failure is logged.
        """
        if self._user_key is None:
            return self._keys
        try:
            await self._cache.fetch(self.cache_key, self._fetch, force=True)
        except ClassTrackerError as exc:
            log.warning(
                "subscriptions_unavailable",
                user=self._user_key,
                code=exc.code.value,
            )
        except asyncio.CancelledError:
            if not evicted():
                raise
        self._sync()
        return self._keys

    async def invalidate(self) -> None:
        """Invalidate the cached list, refetch it, and rebuild the index."""
        if self._user_key is None:
            return
        await self._cache.invalidate(self.cache_key)
        self._sync()

    def _sync(self) -> None:
        # Picks up whatever the cache holds for the key, including poll results.
        if self._user_key is None:
            return
        entry = self._cache.get(self.cache_key)
        if entry is None or not entry.has_value or entry.value is self._source:
            return
        records: list[SubscriptionRecord] = entry.value
        self._source = entry.value
        self._records = tuple(records)
        self._keys = frozenset(record.key for record in records)
        self.status = IndexStatus.FETCHED
        log.debug("subscription_index_rebuilt", user=self._user_key, size=len(self._keys))

    def contains(self, entry_id: str, subject_code: str) -> bool:
        self._sync()
        return (entry_id, subject_code) in self._keys

    @property
    def keys(self) -> frozenset[EntryKey]:
        self._sync()
        return self._keys

    @property
    def records(self) -> tuple[SubscriptionRecord, ...]:
        self._sync()
        return self._records

    def __len__(self) -> int:
        return len(self.keys)
