"""Connection pool management for the credential database."""

from __future__ import annotations

import logging
import os
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

import asyncpg

logger = logging.getLogger(__name__)

_VALID_SSL_MODES = {"disable", "prefer", "allow", "require", "verify-ca", "verify-full"}


def _normalize_ssl_mode(value: str | None) -> str | None:
    """Normalize an SSL mode value for asyncpg or return None if unset/invalid."""
    if value is None:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    if normalized in _VALID_SSL_MODES:
        return normalized
    logger.warning("Ignoring invalid PostgreSQL sslmode value: %s", value)
    return None


def _db_params_from_database_url(database_url: str) -> dict[str, Any]:
    """Parse connection params from a libpq-style DATABASE_URL."""
    parsed = urlparse(database_url)
    sslmode = _normalize_ssl_mode(parse_qs(parsed.query).get("sslmode", [None])[0])
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": unquote(parsed.username) if parsed.username else "postgres",
        "password": unquote(parsed.password) if parsed.password else "postgres",
        "database": parsed.path.lstrip("/") or "postgres",
        "ssl": sslmode,
    }


def db_params_from_env() -> dict[str, Any]:
    """Read DB connection params from environment variables.

    ``DATABASE_URL`` wins when set; otherwise the ``POSTGRES_*`` variables are
    used with local-development defaults.
    """
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return _db_params_from_database_url(database_url)
    return {
        "host": os.environ.get("POSTGRES_HOST", "localhost"),
        "port": int(os.environ.get("POSTGRES_PORT", "5432")),
        "user": os.environ.get("POSTGRES_USER", "postgres"),
        "password": os.environ.get("POSTGRES_PASSWORD", "postgres"),
        "database": os.environ.get("POSTGRES_DB", "postgres"),
        "ssl": _normalize_ssl_mode(os.environ.get("POSTGRES_SSLMODE")),
    }


async def create_pool(
    params: dict[str, Any] | None = None,
    *,
    min_size: int = 1,
    max_size: int = 5,
) -> asyncpg.Pool:
    """Open an asyncpg pool for the credential database."""
    params = dict(params or db_params_from_env())
    if params.get("ssl") is None:
        params.pop("ssl", None)
    pool = await asyncpg.create_pool(min_size=min_size, max_size=max_size, **params)
    logger.info(
        "Database pool opened: %s:%s/%s",
        params.get("host"),
        params.get("port"),
        params.get("database"),
    )
    return pool
