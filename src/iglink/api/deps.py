"""Collaborator wiring and FastAPI dependencies for the iglink API.

Collaborators live on ``app.state`` rather than in module globals so each app
instance (and each test) owns its own HTTP client, pool, and orchestrator.

Provides:
- ``build_orchestrator()``: assemble a ``CallbackOrchestrator`` from settings,
  a shared ``httpx.AsyncClient`` and an asyncpg pool.
- ``get_settings()`` / ``get_state_verifier()`` / ``get_orchestrator()``:
  FastAPI dependency functions reading from ``request.app.state``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from fastapi import Request

from iglink.callback import CallbackOrchestrator
from iglink.config import Settings
from iglink.exchange import TokenExchanger
from iglink.sessions import SessionResolver
from iglink.state_tokens import StateTokenVerifier
from iglink.store import InstagramAccountStore
from iglink.webhooks import WebhookSubscriber

if TYPE_CHECKING:
    import asyncpg


def build_state_verifier(settings: Settings) -> StateTokenVerifier:
    return StateTokenVerifier(
        settings.effective_state_secret,
        ttl_seconds=settings.state_ttl_seconds,
    )


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Shared outbound client; its timeout bounds every provider call."""
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)


def build_orchestrator(
    settings: Settings,
    http_client: httpx.AsyncClient,
    pool: asyncpg.Pool,
    *,
    state_verifier: StateTokenVerifier | None = None,
) -> CallbackOrchestrator:
    """Assemble the callback orchestrator and its collaborators."""
    return CallbackOrchestrator(
        state_verifier=state_verifier or build_state_verifier(settings),
        exchanger=TokenExchanger(
            http_client,
            client_id=settings.instagram_app_id,
            client_secret=settings.instagram_app_secret,
            redirect_uri=settings.redirect_uri,
        ),
        sessions=SessionResolver(
            http_client,
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_role_key,
        ),
        store=InstagramAccountStore(pool),
        webhooks=WebhookSubscriber(
            http_client,
            subscribe_url=settings.webhook_subscribe_url,
            service_key=settings.supabase_service_role_key,
        ),
        webhook_verify_token=settings.webhook_verify_token,
    )


def get_settings(request: Request) -> Settings:
    """FastAPI dependency: the app's ``Settings``."""
    return request.app.state.settings


def get_state_verifier(request: Request) -> StateTokenVerifier:
    """FastAPI dependency: the app's ``StateTokenVerifier``."""
    return request.app.state.state_verifier


def get_orchestrator(request: Request) -> CallbackOrchestrator | None:
    """FastAPI dependency: the app's orchestrator, or ``None`` before startup wiring.

    The callback route maps ``None`` to an ``unknown`` redirect instead of
    raising, so the browser always gets a redirect.
    """
    return getattr(request.app.state, "orchestrator", None)
