"""iglink API — FastAPI application factory.

The app factory creates a FastAPI instance with:
- Lifespan handler that opens the shared HTTP client and DB pool when they
  were not injected, and closes whatever it opened
- Error-handling and request-context middleware
- Health endpoint at GET /api/health
- The Instagram linking router
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI

from iglink import __version__
from iglink.api.deps import build_http_client, build_orchestrator, build_state_verifier
from iglink.api.middleware import register_error_handlers
from iglink.api.models import HealthResponse
from iglink.api.routers.instagram import router as instagram_router
from iglink.config import Settings, load_settings
from iglink.core.metrics import init_metrics
from iglink.db import create_pool

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open missing collaborators on startup; close the ones opened here on shutdown."""
    settings: Settings = app.state.settings
    owned_client: httpx.AsyncClient | None = None
    owned_pool: asyncpg.Pool | None = None

    init_metrics("iglink")

    if app.state.http_client is None:
        owned_client = build_http_client(settings)
        app.state.http_client = owned_client

    if app.state.pool is None:
        try:
            owned_pool = await create_pool()
            app.state.pool = owned_pool
        except Exception:
            logger.warning(
                "Failed to open credential database pool; callbacks will fail", exc_info=True
            )

    if app.state.orchestrator is None and app.state.pool is not None:
        app.state.orchestrator = build_orchestrator(
            settings,
            app.state.http_client,
            app.state.pool,
            state_verifier=app.state.state_verifier,
        )

    yield

    if owned_pool is not None:
        await owned_pool.close()
        app.state.pool = None
    if owned_client is not None:
        await owned_client.aclose()
        app.state.http_client = None
    app.state.orchestrator = None


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    pool: asyncpg.Pool | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    settings:
        Service configuration.  Defaults to ``load_settings()``.
    http_client:
        Shared outbound client.  When omitted, the lifespan opens one.
    pool:
        asyncpg pool for the credential store.  When omitted, the lifespan
        opens one from ``DATABASE_URL`` / ``POSTGRES_*``.

    When both *http_client* and *pool* are given, the orchestrator is wired
    immediately, so the app is usable without running the lifespan.
    """
    if settings is None:
        settings = load_settings()

    app = FastAPI(
        title="iglink",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    app.state.settings = settings
    app.state.state_verifier = build_state_verifier(settings)
    app.state.http_client = http_client
    app.state.pool = pool
    app.state.orchestrator = None
    if http_client is not None and pool is not None:
        app.state.orchestrator = build_orchestrator(
            settings, http_client, pool, state_verifier=app.state.state_verifier
        )

    register_error_handlers(app)

    app.include_router(instagram_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse()

    return app
