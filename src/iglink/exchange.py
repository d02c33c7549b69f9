"""Two-hop Instagram token exchange.

Hop 1 trades the authorization code for a short-lived token and the Instagram
user id.  Hop 2 trades the short-lived token for a long-lived one.  Hop 2
never runs unless hop 1 succeeded, and neither hop is retried.

Provider response bodies are untrusted: they are validated against the
pydantic schemas below before any field is read.  Raw bodies are never logged
because they carry access tokens.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from iglink.errors import TokenExchangeError
from iglink.models import LongLivedToken, ProviderToken, TokenGrant
from iglink.outcomes import Failure, FailureReason

logger = logging.getLogger(__name__)

INSTAGRAM_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
INSTAGRAM_LONG_LIVED_TOKEN_URL = "https://graph.instagram.com/access_token"

HOP_CODE = "code_exchange"
HOP_LONG_LIVED = "long_lived_exchange"


# ---------------------------------------------------------------------------
# Wire schemas
# ---------------------------------------------------------------------------


class _CodeExchangeResponse(BaseModel):
    access_token: str
    user_id: str
    token_type: str = "bearer"

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user_id(cls, value: Any) -> Any:
        # Instagram returns the user id as a JSON number.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("access_token", "user_id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be non-empty")
        return value


class _LongLivedResponse(BaseModel):
    access_token: str
    expires_in: int
    token_type: str = "bearer"

    @field_validator("access_token")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be non-empty")
        return value

    @field_validator("expires_in")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _decode(hop: str, response: httpx.Response) -> Any:
    if not response.is_success:
        # Status only; the body may echo credentials.
        raise TokenExchangeError(hop, f"provider returned HTTP {response.status_code}")
    try:
        return response.json()
    except ValueError as exc:  # JSONDecodeError or UnicodeDecodeError
        raise TokenExchangeError(hop, "provider returned a non-JSON body") from exc


class TokenExchanger:
    """Performs the code → short-lived → long-lived exchange against Instagram.

    Parameters
    ----------
    http_client:
        Shared ``httpx.AsyncClient``; its timeout bounds both hops.
    client_id:
        Instagram app id.
    client_secret:
        Instagram app secret.
    redirect_uri:
        Must equal the URI used to obtain the authorization code.
    clock:
        Returns the current UTC time; used to compute absolute expiry.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        token_url: str = INSTAGRAM_TOKEN_URL,
        long_lived_url: str = INSTAGRAM_LONG_LIVED_TOKEN_URL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._http = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._token_url = token_url
        self._long_lived_url = long_lived_url
        self._clock = clock

    async def exchange_code(self, code: str) -> ProviderToken:
        """Hop 1: trade the authorization code for a short-lived token.

        Raises
        ------
        TokenExchangeError
            On transport failure, non-2xx status, or a body that fails validation.
        """
        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "authorization_code",
            "redirect_uri": self._redirect_uri,
            "code": code,
        }
        try:
            response = await self._http.post(self._token_url, data=payload)
        except httpx.HTTPError as exc:
            raise TokenExchangeError(HOP_CODE, f"network error: {type(exc).__name__}") from exc

        body = _decode(HOP_CODE, response)
        try:
            parsed = _CodeExchangeResponse.model_validate(body)
        except ValidationError as exc:
            raise TokenExchangeError(HOP_CODE, "unexpected token response shape") from exc

        return ProviderToken(
            access_token=parsed.access_token,
            token_type=parsed.token_type,
            provider_user_id=parsed.user_id,
        )

    async def exchange_long_lived(self, short_lived_token: str) -> LongLivedToken:
        """Hop 2: trade a short-lived token for a long-lived one.

        The absolute expiry is computed from the time the request was issued,
        never from when the response arrived.
        """
        params = {
            "grant_type": "ig_exchange_token",
            "client_secret": self._client_secret,
            "access_token": short_lived_token,
        }
        issued_at = self._clock()
        try:
            response = await self._http.get(self._long_lived_url, params=params)
        except httpx.HTTPError as exc:
            raise TokenExchangeError(
                HOP_LONG_LIVED, f"network error: {type(exc).__name__}"
            ) from exc

        body = _decode(HOP_LONG_LIVED, response)
        try:
            parsed = _LongLivedResponse.model_validate(body)
        except ValidationError as exc:
            raise TokenExchangeError(HOP_LONG_LIVED, "unexpected token response shape") from exc

        return LongLivedToken(
            access_token=parsed.access_token,
            token_type=parsed.token_type,
            expires_in_seconds=parsed.expires_in,
            expires_at=issued_at + timedelta(seconds=parsed.expires_in),
        )

    async def exchange(self, code: str) -> TokenGrant | Failure:
        """Run both hops; any hop failure becomes ``Failure(exchange_failed)``."""
        try:
            short_lived = await self.exchange_code(code)
            long_lived = await self.exchange_long_lived(short_lived.access_token)
        except TokenExchangeError as exc:
            logger.warning("Instagram token exchange failed at %s: %s", exc.hop, exc)
            return Failure(FailureReason.exchange_failed, detail=exc.hop)

        logger.info(
            "Instagram token exchange complete (instagram_user_id=%s, expires_at=%s)",
            short_lived.provider_user_id,
            long_lived.expires_at.isoformat(),
        )
        return TokenGrant(provider_user_id=short_lived.provider_user_id, long_lived=long_lived)
