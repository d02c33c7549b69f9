"""Terminal outcomes of the Instagram callback flow and their redirect targets.

Every callback produces exactly one ``Outcome``: a ``Success`` or a
``Failure`` tagged with a ``FailureReason``.  ``redirect_url()`` maps the
outcome to the location the browser is sent to.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TypeAlias


class FailureReason(StrEnum):
    """Machine-readable reasons a callback flow stops."""

    provider_denied = "provider_denied"
    """Instagram redirected back with an ``error`` parameter."""

    invalid_request = "invalid_request"
    """``code`` or ``state`` is missing."""

    invalid_state = "invalid_state"
    """CSRF state was forged, malformed, or expired."""

    exchange_failed = "exchange_failed"
    """Either hop of the token exchange failed."""

    no_session = "no_session"
    """No first-party session credential accompanied the request."""

    invalid_session = "invalid_session"
    """The session credential could not be resolved to a user."""

    persistence_failed = "persistence_failed"
    """The credential upsert failed."""

    unknown = "unknown"
    """Anything unanticipated."""


@dataclass(frozen=True)
class Success:
    """The credential was persisted.

    ``webhook_error`` records a best-effort subscription failure; it never
    turns the outcome into a failure.
    """

    user_id: str
    instagram_user_id: str
    webhook_error: str | None = None


@dataclass(frozen=True)
class Failure:
    reason: FailureReason
    detail: str | None = None


Outcome: TypeAlias = Success | Failure

_SETTINGS_PATH = "/dashboard/settings"
_LOGIN_PATH = "/login"

# Reason → (path, error code carried in the query string)
_FAILURE_TARGETS: dict[FailureReason, tuple[str, str]] = {
    FailureReason.provider_denied: (_SETTINGS_PATH, "instagram_auth"),
    FailureReason.invalid_request: (_SETTINGS_PATH, "invalid_request"),
    FailureReason.invalid_state: (_SETTINGS_PATH, "invalid_state"),
    FailureReason.exchange_failed: (_SETTINGS_PATH, "unknown"),
    FailureReason.persistence_failed: (_SETTINGS_PATH, "database"),
    FailureReason.unknown: (_SETTINGS_PATH, "unknown"),
    FailureReason.no_session: (_LOGIN_PATH, "no_session"),
    FailureReason.invalid_session: (_LOGIN_PATH, "invalid_session"),
}


def redirect_url(outcome: Outcome, app_url: str) -> str:
    """Return the absolute redirect target for *outcome*."""
    base = app_url.rstrip("/")
    match outcome:
        case Success():
            return f"{base}{_SETTINGS_PATH}?success=true"
        case Failure(reason=reason):
            path, code = _FAILURE_TARGETS.get(reason, (_SETTINGS_PATH, "unknown"))
            return f"{base}{path}?error={code}"
    raise TypeError(f"Unsupported outcome: {outcome!r}")
