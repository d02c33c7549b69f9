"""Exception types raised by the callback flow's collaborators.

Collaborators raise; the orchestrator converts each exception into a tagged
``Failure`` at the stage boundary.  Messages never carry secret material.
"""

from __future__ import annotations


class IglinkError(Exception):
    """Base class for all iglink collaborator errors."""


class TokenExchangeError(IglinkError):
    """Raised when either hop of the token exchange fails."""

    def __init__(self, hop: str, message: str) -> None:
        self.hop = hop
        super().__init__(f"{hop}: {message}")


class SessionResolutionError(IglinkError):
    """Raised when the identity provider cannot resolve a session credential."""


class CredentialStoreError(IglinkError):
    """Raised when the credential upsert fails."""


class WebhookSubscriptionError(IglinkError):
    """Raised when the webhook subscription endpoint rejects or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
