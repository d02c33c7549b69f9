"""HMAC-signed, time-bound CSRF state tokens.

Token format: ``{base64url(nonce "." issued_at)}.{hex_hmac}``

The state value is self-contained: nothing is stored server-side, so any
worker can verify a token minted by any other worker sharing the secret.
Each token carries a fresh random nonce, so no two flows share a value.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import time

from iglink.config import ConfigError

__all__ = ["StateTokenVerifier"]

# Tokens minted slightly in the future (clock skew between workers) are tolerated.
_MAX_CLOCK_SKEW_SECONDS = 60
_NONCE_BYTES = 16


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padding = -len(value) % 4
    return base64.urlsafe_b64decode(value + "=" * padding)


class StateTokenVerifier:
    """Issue and verify CSRF state values for the linking flow.

    Parameters
    ----------
    secret:
        HMAC key.  Rotating it invalidates every outstanding state value.
    ttl_seconds:
        Lifetime of an issued state value.
    """

    def __init__(self, secret: str, ttl_seconds: int = 600) -> None:
        if not secret:
            raise ConfigError("State token secret must be non-empty")
        if ttl_seconds <= 0:
            raise ConfigError("State token TTL must be positive")
        self._key = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds

    def __repr__(self) -> str:
        return f"StateTokenVerifier(ttl_seconds={self.ttl_seconds})"

    def _sign(self, payload: str) -> str:
        return hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, now: float | None = None) -> str:
        """Mint a new state value."""
        issued_at = int(time.time() if now is None else now)
        nonce = secrets.token_hex(_NONCE_BYTES)
        payload = _b64encode(f"{nonce}.{issued_at}".encode("ascii"))
        return f"{payload}.{self._sign(payload)}"

    def verify(self, state: str, now: float | None = None) -> bool:
        """Return True iff *state* was issued by this verifier and is unexpired.

        The signature is checked with a constant-time comparison before the
        timestamp is looked at, so forged and expired values are
        indistinguishable up to that point.
        """
        if not state or state.count(".") != 1:
            return False

        payload, signature = state.split(".", 1)
        if not payload or not signature:
            return False

        expected = self._sign(payload).encode("ascii")
        if not hmac.compare_digest(expected, signature.encode("utf-8")):
            return False

        try:
            nonce, issued_raw = _b64decode(payload).decode("ascii").split(".", 1)
            issued_at = int(issued_raw)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return False
        if not nonce:
            return False

        current = time.time() if now is None else now
        if issued_at > current + _MAX_CLOCK_SKEW_SECONDS:
            return False
        return current - issued_at <= self.ttl_seconds
