"""Per-user session: owns and wires the core components.

A ``TrackerSession`` is created when a user starts browsing (signed in or
not) and closed on sign-out or navigation away. Closing it stops polling and
drops every cached page, index, and notification it owned.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from classtracker.catalog import CatalogController
from classtracker.errors import ClassTrackerError
from classtracker.mutations import MutationCoordinator
from classtracker.notifications import NotificationQueue
from classtracker.query_cache import QueryCache
from classtracker.subscriptions import SubscriptionIndex

if TYPE_CHECKING:
    from classtracker.api import ApiClient
    from classtracker.config import Settings
    from classtracker.identity import Identity, IdentityProvider
    from classtracker.models.catalog import CatalogEntry
    from classtracker.models.subscriptions import SubscriptionRecord
    from classtracker.mutations import MutationOutcome

log = structlog.get_logger()


@dataclass(frozen=True)
class CatalogRow:
    entry: CatalogEntry
    subscribed: bool


class TrackerSession:
    def __init__(
        self, settings: Settings, api: ApiClient, identity_provider: IdentityProvider
    ) -> None:
        self.settings = settings
        self.identity: Identity = identity_provider.current()
        self._api = api
        self.cache = QueryCache()
        self.catalog = CatalogController(
            api,
            self.cache,
            page_size=settings.catalog.page_size,
            default_query=settings.catalog.default_query,
        )
        self.index = SubscriptionIndex(
            api, self.cache, poll_interval=settings.subscriptions.poll_interval_seconds
        )
        self.notifications = NotificationQueue(settings.notifications.duration_ms)
        self.mutations = MutationCoordinator(api, self.index, self.notifications)

    @property
    def authenticated(self) -> bool:
        return self.identity.has_user_key

    async def open(self) -> None:
        """Register the user, start the subscription index, and load the first page."""
        if self.authenticated:
            try:
                await self._api.register_user(self.identity)
            except ClassTrackerError as exc:
                log.warning(
                    "user_registration_failed",
                    user=self.identity.user_key,
                    code=exc.code.value,
                )
        self.index.start(self.identity)
        await self.index.refresh()
        await self.catalog.load()
        log.info("session_opened", authenticated=self.authenticated)

    def rows(self) -> list[CatalogRow]:
        """Current catalog entries with their subscribed flag."""
        page = self.catalog.page_or_empty()
        if not self.authenticated:
            return [CatalogRow(entry, False) for entry in page.entries]
        return [
            CatalogRow(entry, self.index.contains(entry.entry_id, entry.subject_code))
            for entry in page.entries
        ]

    def is_subscribed(self, entry: CatalogEntry) -> bool:
        return self.authenticated and self.index.contains(entry.entry_id, entry.subject_code)

    def subscriptions(self) -> tuple[SubscriptionRecord, ...]:
        return self.index.records

    def _surface(self, outcome: MutationOutcome) -> MutationOutcome:
        if not outcome.succeeded:
            message = outcome.message
            self.notifications.show(message.title, message.body, message.severity)
        return outcome

    async def subscribe(self, entry: CatalogEntry) -> MutationOutcome:
        return self._surface(await self.mutations.subscribe(entry, self.identity))

    async def unsubscribe(self, entry: CatalogEntry | SubscriptionRecord) -> MutationOutcome:
        return self._surface(await self.mutations.unsubscribe(entry, self.identity))

    async def request_toggle(self, entry: CatalogEntry) -> MutationOutcome:
        """Subscribe if not subscribed, otherwise unsubscribe."""
        if self.is_subscribed(entry):
            return await self.unsubscribe(entry)
        return await self.subscribe(entry)

    def close(self) -> None:
        self.catalog.close()
        self.index.stop()
        self.cache.clear()
        self.notifications.clear()
        log.info("session_closed", authenticated=self.authenticated)
