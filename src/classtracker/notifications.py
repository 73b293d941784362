"""Single-slot, auto-expiring outcome messages.

Only one notification is ever active. ``show()`` replaces whatever is
currently displayed and restarts the countdown; the replaced message is
dropped, not queued.
"""

from __future__ import annotations

import asyncio

import structlog

from classtracker.models.notifications import Notification, Severity

log = structlog.get_logger()

DEFAULT_DURATION_MS = 3000


class NotificationQueue:
    def __init__(self, duration_ms: int = DEFAULT_DURATION_MS) -> None:
        if duration_ms <= 0:
            raise ValueError("duration_ms must be > 0")
        self._duration = duration_ms / 1000
        self._current: Notification | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def current(self) -> Notification | None:
        """The active notification, or None once cleared or past its deadline."""
        if self._current is None:
            return None
        if self._current.deadline <= asyncio.get_running_loop().time():
            return None
        return self._current

    def show(
        self, title: str, body: str, severity: Severity = Severity.DEFAULT
    ) -> Notification:
        loop = asyncio.get_running_loop()
        self._cancel_timer()
        deadline = loop.time() + self._duration
        if self._current is not None:
            deadline = max(deadline, self._current.deadline)
        notification = Notification(title=title, body=body, severity=severity, deadline=deadline)
        self._current = notification
        self._timer = loop.call_at(deadline, self._expire, notification)
        log.debug("notification_shown", title=title, severity=severity.value)
        return notification

    def clear(self) -> None:
        self._cancel_timer()
        self._current = None

    def _expire(self, notification: Notification) -> None:
        # A superseded message's timer is cancelled, but guard against a late callback.
        if self._current is notification:
            self._current = None
            self._timer = None
            log.debug("notification_expired", title=notification.title)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
