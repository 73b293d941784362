from __future__ import annotations

from classtracker.models.catalog import (
    WILDCARD_QUERY,
    CatalogEntry,
    CatalogPage,
    CatalogQuery,
    EntryKey,
    Term,
)
from classtracker.models.notifications import Notification, Severity
from classtracker.models.subscriptions import (
    SubscribeRequest,
    SubscriptionRecord,
    UnsubscribeRequest,
)

__all__ = [
    # catalog
    "WILDCARD_QUERY",
    "CatalogEntry",
    "CatalogPage",
    "CatalogQuery",
    "EntryKey",
    "Term",
    # subscriptions
    "SubscriptionRecord",
    "SubscribeRequest",
    "UnsubscribeRequest",
    # notifications
    "Notification",
    "Severity",
]
