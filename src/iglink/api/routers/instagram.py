"""Instagram account-linking endpoints.

The linking flow:
  1. GET /api/auth/instagram/start
     - Issues a signed, time-bound CSRF state value.
     - Redirects the browser to Instagram's authorization page (or returns
       the URL as JSON when ``?redirect=false``).

  2. GET /api/auth/instagram/callback
     - Hands ``code``/``state``/``error`` and the ``sb-access-token`` session
       cookie to the ``CallbackOrchestrator``.
     - Always answers with a 302 redirect to the settings or login page,
       carrying a machine-readable result in the query string.

Security notes:
  - Client secrets, tokens and session cookies are never logged or echoed.
  - Raw provider error strings are never reflected into the redirect.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Cookie, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse, Response

from iglink.api.deps import get_orchestrator, get_settings, get_state_verifier
from iglink.api.models.oauth import InstagramStartResponse
from iglink.callback import CallbackOrchestrator
from iglink.config import Settings
from iglink.models import AuthorizationRequest
from iglink.outcomes import Failure, FailureReason, redirect_url
from iglink.sessions import SESSION_COOKIE_NAME
from iglink.state_tokens import StateTokenVerifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/instagram", tags=["instagram"])

INSTAGRAM_AUTHORIZE_URL = "https://api.instagram.com/oauth/authorize"


# ---------------------------------------------------------------------------
# Start endpoint
# ---------------------------------------------------------------------------


@router.get(
    "/start",
    responses={
        200: {"model": InstagramStartResponse, "description": "JSON payload (redirect=false)"},
        302: {"description": "Redirect to Instagram authorization URL"},
    },
)
async def instagram_start(
    redirect: bool = Query(
        default=True,
        description="If true (default), redirect to Instagram. "
        "If false, return the URL as JSON for programmatic callers.",
    ),
    settings: Settings = Depends(get_settings),
    state_verifier: StateTokenVerifier = Depends(get_state_verifier),
) -> Response:
    """Begin the Instagram authorization flow."""
    state = state_verifier.issue()
    params = {
        "client_id": settings.instagram_app_id,
        "redirect_uri": settings.redirect_uri,
        "response_type": "code",
        "scope": settings.instagram_scopes,
        "state": state,
    }
    authorization_url = f"{INSTAGRAM_AUTHORIZE_URL}?{urlencode(params)}"

    logger.info("Instagram OAuth flow started (state=%s...)", state[:8])

    if redirect:
        return RedirectResponse(url=authorization_url, status_code=302)

    return JSONResponse(
        content=InstagramStartResponse(
            authorization_url=authorization_url,
            state=state,
        ).model_dump()
    )


# ---------------------------------------------------------------------------
# Callback endpoint
# ---------------------------------------------------------------------------


@router.get("/callback", responses={302: {"description": "Redirect to settings or login"}})
async def instagram_callback(
    code: str | None = Query(default=None, description="Authorization code from Instagram."),
    state: str | None = Query(default=None, description="CSRF state value."),
    error: str | None = Query(default=None, description="OAuth error code from Instagram."),
    session_credential: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    settings: Settings = Depends(get_settings),
    orchestrator: CallbackOrchestrator | None = Depends(get_orchestrator),
) -> RedirectResponse:
    """Complete the Instagram linking flow and redirect the browser."""
    if orchestrator is None:
        logger.error("Instagram callback received before collaborators were wired")
        outcome = Failure(FailureReason.unknown)
    else:
        outcome = await orchestrator.handle(
            AuthorizationRequest(code=code, error=error, state=state),
            session_credential,
        )
    return RedirectResponse(url=redirect_url(outcome, settings.app_url), status_code=302)
