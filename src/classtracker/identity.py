"""Identity-source contract.

The core never talks to an identity provider directly. It only needs to know
whether a user is signed in and, if so, their stable key (email) and display
name. Anything that can produce an ``Identity`` satisfies ``IdentityProvider``.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool = False
    user_key: str | None = None  # the user's email
    display_name: str | None = None

    @classmethod
    def anonymous(cls) -> Identity:
        return cls()

    @classmethod
    def signed_in(cls, user_key: str, display_name: str | None = None) -> Identity:
        return cls(authenticated=True, user_key=user_key, display_name=display_name)

    @property
    def has_user_key(self) -> bool:
        return self.authenticated and bool(self.user_key)

    def missing_fields(self, *, require_display_name: bool) -> list[str]:
        """Names of the identity fields a mutation needs but this identity lacks."""
        missing: list[str] = []
        if not self.has_user_key:
            missing.append("user_key")
        if require_display_name and not (self.authenticated and self.display_name):
            missing.append("display_name")
        return missing


class IdentityProvider(Protocol):
    def current(self) -> Identity: ...


class StaticIdentityProvider:
    """IdentityProvider that always returns the identity it was built with."""

    def __init__(self, identity: Identity | None = None) -> None:
        self._identity = identity or Identity.anonymous()

    def current(self) -> Identity:
        return self._identity
