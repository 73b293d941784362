from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class Severity(StrEnum):
    SUCCESS = "success"
    DANGER = "danger"
    DEFAULT = "default"
    PRIMARY = "primary"
    SECONDARY = "secondary"
    WARNING = "warning"


class Notification(BaseModel):
    """The single active user-facing message."""

    model_config = ConfigDict(frozen=True)

    title: str
    body: str
    severity: Severity = Severity.DEFAULT
    deadline: float  # event-loop monotonic time at which the message expires
