"""Subscribe/unsubscribe mutations.

Each call moves through ``IDLE → SUBMITTING → SUCCEEDED | FAILED``. A
successful mutation invalidates the subscription index so it is refetched
from the server; nothing is patched locally. A failed one leaves all cached
state untouched and hands back a failure notification for the caller to show.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from classtracker.errors import ClassTrackerError, ErrorCode
from classtracker.models.notifications import Severity
from classtracker.models.subscriptions import SubscribeRequest, UnsubscribeRequest

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from classtracker.api import ApiClient
    from classtracker.identity import Identity
    from classtracker.models.catalog import CatalogEntry, EntryKey
    from classtracker.models.subscriptions import SubscriptionRecord
    from classtracker.notifications import NotificationQueue
    from classtracker.subscriptions import SubscriptionIndex

log = structlog.get_logger()


class MutationState(StrEnum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class MutationKind(StrEnum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


@dataclass(frozen=True)
class NotificationMessage:
    title: str
    body: str
    severity: Severity


SIGN_IN_REQUIRED = NotificationMessage(
    title="Sign In Required",
    body="Please sign in to subscribe.",
    severity=Severity.DANGER,
)


@dataclass(frozen=True)
class MutationOutcome:
    kind: MutationKind
    state: MutationState
    entry_key: EntryKey
    message: NotificationMessage
    error: ClassTrackerError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is MutationState.SUCCEEDED

    @property
    def error_code(self) -> ErrorCode | None:
        return self.error.code if self.error is not None else None


def _success_message(kind: MutationKind, name: str) -> NotificationMessage:
    if kind is MutationKind.SUBSCRIBE:
        return NotificationMessage(
            "Subscription Successful", f"You have subscribed to {name}.", Severity.SUCCESS
        )
    return NotificationMessage(
        "Unsubscription Successful", f"You have unsubscribed from {name}.", Severity.SUCCESS
    )


def _failure_message(
    kind: MutationKind, name: str, error: ClassTrackerError
) -> NotificationMessage:
    if error.code is ErrorCode.UNAUTHENTICATED:
        return SIGN_IN_REQUIRED
    if kind is MutationKind.SUBSCRIBE:
        return NotificationMessage(
            "Subscription Failed", f"Could not subscribe to {name}.", Severity.DANGER
        )
    return NotificationMessage(
        "Unsubscription Failed", f"Could not unsubscribe from {name}.", Severity.DANGER
    )


def _unauthenticated(
    identity: Identity, *, require_display_name: bool
) -> ClassTrackerError | None:
    missing = identity.missing_fields(require_display_name=require_display_name)
    if not missing:
        return None
    return ClassTrackerError(
        ErrorCode.UNAUTHENTICATED,
        f"Sign in required (missing {', '.join(missing)})",
        details={"missing": missing},
    )


class MutationCoordinator:
    def __init__(
        self,
        api: ApiClient,
        index: SubscriptionIndex,
        notifications: NotificationQueue,
    ) -> None:
        self._api = api
        self._index = index
        self._notifications = notifications
        self.state = MutationState.IDLE

    async def subscribe(
        self,
        entry: CatalogEntry,
        identity: Identity,
        *,
        status: str | None = None,
    ) -> MutationOutcome:
        kind = MutationKind.SUBSCRIBE
        error = _unauthenticated(identity, require_display_name=True)
        if error is not None:
            return self._fail(kind, entry.key, entry.display_name, error)

        assert identity.user_key is not None and identity.display_name is not None
        request = SubscribeRequest(
            user_email=identity.user_key,
            user_full_name=identity.display_name,
            course_id=entry.entry_id,
            course_name=entry.display_name,
            course_subject_code=entry.subject_code,
            course_status=status,
        )
        return await self._submit(
            kind, entry.key, entry.display_name, self._api.subscribe(request)
        )

    async def unsubscribe(
        self, entry: CatalogEntry | SubscriptionRecord, identity: Identity
    ) -> MutationOutcome:
        kind = MutationKind.UNSUBSCRIBE
        name = entry.display_name
        error = _unauthenticated(identity, require_display_name=False)
        if error is not None:
            return self._fail(kind, entry.key, name, error)

        assert identity.user_key is not None
        request = UnsubscribeRequest(
            user_email=identity.user_key,
            course_id=entry.entry_id,
            course_subject_code=entry.subject_code,
        )
        return await self._submit(kind, entry.key, name, self._api.unsubscribe(request))

    async def _submit(
        self, kind: MutationKind, entry_key: EntryKey, name: str, call: Awaitable[None]
    ) -> MutationOutcome:
        self.state = MutationState.SUBMITTING
        log.info("mutation_submitting", kind=kind.value, entry=entry_key)
        try:
            await call
        except ClassTrackerError as exc:
            return self._fail(kind, entry_key, name, exc)

        self.state = MutationState.SUCCEEDED
        log.info("mutation_succeeded", kind=kind.value, entry=entry_key)
        await self._index.invalidate()
        message = _success_message(kind, name)
        self._notifications.show(message.title, message.body, message.severity)
        return MutationOutcome(kind, MutationState.SUCCEEDED, entry_key, message)

    def _fail(
        self, kind: MutationKind, entry_key: EntryKey, name: str, error: ClassTrackerError
    ) -> MutationOutcome:
        self.state = MutationState.FAILED
        log.warning(
            "mutation_failed",
            kind=kind.value,
            entry=entry_key,
            code=error.code.value,
            status_code=error.status_code,
        )
        return MutationOutcome(
            kind, MutationState.FAILED, entry_key, _failure_message(kind, name, error), error
        )
