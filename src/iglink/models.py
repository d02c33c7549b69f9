"""Domain records passed between the stages of the callback flow.

All records except ``InstagramCredential`` are request-scoped and never
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class AuthorizationRequest:
    """Query parameters Instagram appends to the callback redirect."""

    code: str | None = None
    error: str | None = None
    state: str | None = None


@dataclass(frozen=True)
class UserSession:
    """A first-party user resolved from a session credential."""

    user_id: str
    session_token: str

    def __repr__(self) -> str:
        return f"UserSession(user_id={self.user_id!r})"


@dataclass(frozen=True)
class ProviderToken:
    """Short-lived token returned by the authorization-code exchange."""

    access_token: str
    token_type: str
    provider_user_id: str

    def __repr__(self) -> str:
        return f"ProviderToken(provider_user_id={self.provider_user_id!r})"


@dataclass(frozen=True)
class LongLivedToken:
    """Long-lived token returned by the ``ig_exchange_token`` hop."""

    access_token: str
    token_type: str
    expires_in_seconds: int
    expires_at: datetime

    def __repr__(self) -> str:
        return f"LongLivedToken(expires_at={self.expires_at.isoformat()!r})"


@dataclass(frozen=True)
class TokenGrant:
    """Result of both exchange hops: who the Instagram user is and the token to keep."""

    provider_user_id: str
    long_lived: LongLivedToken


@dataclass(frozen=True)
class InstagramCredential:
    """Persisted credential; one per first-party user."""

    user_id: str
    instagram_user_id: str
    access_token: str
    token_expires_at: datetime

    def __repr__(self) -> str:
        return (
            f"InstagramCredential(user_id={self.user_id!r}, "
            f"instagram_user_id={self.instagram_user_id!r}, "
            f"token_expires_at={self.token_expires_at.isoformat()!r})"
        )
