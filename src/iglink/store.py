"""Persistent Instagram credential store backed by the ``instagram_accounts`` table.

One row per first-party user.  ``upsert()`` is a single
``INSERT … ON CONFLICT (user_id) DO UPDATE`` statement, so a second
successful link for the same user overwrites the first and a failed write
leaves the previous row untouched.

Note: access tokens are NEVER logged.  ``__repr__`` on both the store and the
credential record omit them.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from iglink.errors import CredentialStoreError
from iglink.models import InstagramCredential

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TABLE = "instagram_accounts"

_ACCOUNTS_TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    user_id           TEXT PRIMARY KEY,
    instagram_user_id TEXT NOT NULL,
    access_token      TEXT NOT NULL,
    token_expires_at  TIMESTAMPTZ NOT NULL,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_UPSERT_SQL = f"""
INSERT INTO {_TABLE}
    (user_id, instagram_user_id, access_token, token_expires_at)
VALUES ($1, $2, $3, $4)
ON CONFLICT (user_id) DO UPDATE SET
    instagram_user_id = EXCLUDED.instagram_user_id,
    access_token      = EXCLUDED.access_token,
    token_expires_at  = EXCLUDED.token_expires_at,
    updated_at        = now()
"""


class InstagramAccountStore:
    """Async store for linked Instagram credentials.

    Parameters
    ----------
    pool:
        An asyncpg connection pool.  Each operation acquires a connection
        for the duration of the call.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    def __repr__(self) -> str:
        return f"InstagramAccountStore(pool={self.pool!r})"

    async def ensure_schema(self) -> None:
        """Create the ``instagram_accounts`` table if it does not exist."""
        async with self.pool.acquire() as conn:
            await conn.execute(_ACCOUNTS_TABLE_DDL)
        logger.info("Ensured table %s exists", _TABLE)

    async def upsert(self, credential: InstagramCredential) -> None:
        """Insert or replace the credential owned by ``credential.user_id``.

        Raises
        ------
        ValueError
            If ``user_id`` or ``access_token`` is empty.
        CredentialStoreError
            If the database rejects the write or cannot be reached.
        """
        if not credential.user_id.strip():
            raise ValueError("user_id must be a non-empty string")
        if not credential.access_token:
            raise ValueError("access_token must be a non-empty string")

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    _UPSERT_SQL,
                    credential.user_id,
                    credential.instagram_user_id,
                    credential.access_token,
                    credential.token_expires_at,
                )
        except Exception as exc:
            raise CredentialStoreError(
                f"upsert into {_TABLE} failed: {type(exc).__name__}"
            ) from exc

        logger.info(
            "Instagram credential stored: user_id=%r instagram_user_id=%r",
            credential.user_id,
            credential.instagram_user_id,
        )

    async def load(self, user_id: str) -> InstagramCredential | None:
        """Return the stored credential for *user_id*, or ``None``."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT user_id, instagram_user_id, access_token, token_expires_at
                FROM {_TABLE}
                WHERE user_id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        return InstagramCredential(
            user_id=row["user_id"],
            instagram_user_id=row["instagram_user_id"],
            access_token=row["access_token"],
            token_expires_at=_ensure_utc(row["token_expires_at"]),
        )


def _ensure_utc(dt: datetime) -> datetime:
    """Attach UTC timezone to a naive datetime returned by asyncpg."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt
