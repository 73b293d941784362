"""Error taxonomy shared by every component.

Every failure the core can observe is raised as a ``ClassTrackerError`` that
carries a machine-readable ``ErrorCode`` and a ``recoverable`` hint. Read paths
catch these and degrade to empty results; mutation paths turn them into a
failed ``MutationOutcome`` and a user-visible notification.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    NETWORK_FAILURE = "NETWORK_FAILURE"
    SERVER_REJECTED = "SERVER_REJECTED"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class ClassTrackerError(Exception):
    """Raised for every expected failure of a server call or precondition."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        recoverable: bool = False,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.status_code is not None:
            error["status_code"] = self.status_code
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def __repr__(self) -> str:
        return f"ClassTrackerError(code={self.code.value!r}, message={self.message!r})"
