"""Shared fixtures and helpers for the iglink test suite.

Covers:
- A fully populated ``Settings`` fixture
- asyncpg pool mocks (no real database required)
- ``httpx.MockTransport`` routing helpers for the provider, identity and
  webhook endpoints
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import TypeAlias
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from iglink.config import Settings

APP_URL = "https://app.example.com"
SUPABASE_URL = "https://project.supabase.co"

FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


def make_settings(**overrides) -> Settings:
    values = {
        "app_url": APP_URL,
        "instagram_app_id": "ig-app-id",
        "instagram_app_secret": "ig-app-secret",
        "webhook_verify_token": "verify-me",
        "supabase_url": SUPABASE_URL,
        "supabase_service_role_key": "service-role-key",
        "state_secret": "state-secret",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture(name="make_settings")
def make_settings_fixture():
    """Factory fixture: ``make_settings(**overrides)``."""
    return make_settings


def make_pool(
    *,
    fetchrow_return=None,
    execute_return: str = "INSERT 0 1",
    execute_side_effect=None,
) -> MagicMock:
    """Build a minimal asyncpg pool mock."""
    conn = AsyncMock()
    conn.fetchrow.return_value = fetchrow_return
    conn.execute.return_value = execute_return
    if execute_side_effect is not None:
        conn.execute.side_effect = execute_side_effect

    cm = AsyncMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.acquire.return_value = cm
    # Stash conn for easy assertion access
    pool._conn = conn
    return pool


Handler: TypeAlias = Callable[[httpx.Request], httpx.Response]


class RecordingRouter:
    """Route ``httpx.MockTransport`` requests by ``(method, host, path)``.

    Every request is recorded in ``calls`` so tests can assert on what was
    (and was not) sent.  Unrouted requests answer 404.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str, str], Handler] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler | httpx.Response) -> None:
        parsed = httpx.URL(url)
        if isinstance(handler, httpx.Response):
            response = handler
            handler = lambda request: response  # noqa: E731
        self.routes[(method.upper(), parsed.host, parsed.path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.host, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not routed"})
        return handler(request)

    def calls_to(self, url: str) -> list[httpx.Request]:
        parsed = httpx.URL(url)
        return [
            c for c in self.calls if c.url.host == parsed.host and c.url.path == parsed.path
        ]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture(name="make_pool")
def make_pool_fixture():
    """Factory fixture: ``make_pool(fetchrow_return=..., execute_side_effect=...)``."""
    return make_pool


@pytest.fixture
def router() -> RecordingRouter:
    return RecordingRouter()
