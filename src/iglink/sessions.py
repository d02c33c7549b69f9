"""Resolve a first-party session credential to an authenticated user.

The identity provider is Supabase Auth: ``GET {supabase_url}/auth/v1/user``
with the service key as ``apikey`` and the user's access token as the bearer
credential.  The lookup has no side effects.
"""

from __future__ import annotations

import logging

import httpx

from iglink.errors import SessionResolutionError
from iglink.models import UserSession
from iglink.outcomes import Failure, FailureReason

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "sb-access-token"


class SessionResolver:
    """Look up the user behind a session credential.

    Parameters
    ----------
    http_client:
        Shared ``httpx.AsyncClient``.
    supabase_url:
        Identity provider base URL (no trailing slash).
    service_key:
        Service credential sent as the ``apikey`` header.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        supabase_url: str,
        service_key: str,
    ) -> None:
        self._http = http_client
        self._user_url = f"{supabase_url.rstrip('/')}/auth/v1/user"
        self._service_key = service_key

    async def fetch_user_id(self, session_token: str) -> str:
        """Return the user id for *session_token*.

        Raises
        ------
        SessionResolutionError
            When the provider rejects the token, answers with an unexpected
            body, or cannot be reached.
        """
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {session_token}",
        }
        try:
            response = await self._http.get(self._user_url, headers=headers)
        except httpx.HTTPError as exc:
            raise SessionResolutionError(
                f"identity provider unreachable: {type(exc).__name__}"
            ) from exc

        if not response.is_success:
            raise SessionResolutionError(f"identity provider returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:  # JSONDecodeError or UnicodeDecodeError
            raise SessionResolutionError("identity provider returned a non-JSON body") from exc

        user_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise SessionResolutionError("identity provider response has no user id")
        return user_id

    async def resolve(self, session_credential: str | None) -> UserSession | Failure:
        """Resolve *session_credential*; absent → ``no_session``, unresolvable → ``invalid_session``."""
        if session_credential is None or not session_credential.strip():
            return Failure(FailureReason.no_session)

        try:
            user_id = await self.fetch_user_id(session_credential)
        except SessionResolutionError as exc:
            logger.warning("Session resolution failed: %s", exc)
            return Failure(FailureReason.invalid_session, detail=str(exc))

        return UserSession(user_id=user_id, session_token=session_credential)
