"""Persistence for provider identities and their OAuth token pairs.

One row per ``(provider, user_id)`` in ``oauth_accounts``.  Rows are created
at first sign-in, updated on every refresh and never deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import asyncpg

from src.fitness.base import ProviderIdentity, TokenPair
from src.services.database import get_pool

logger = logging.getLogger("livedata.tokens.store")

_ACCOUNT_COLUMNS = (
    "provider, user_id, email, first_name, last_name, "
    "access_token, refresh_token, token_expires_at"
)


@dataclass
class StoredAccount:
    """One ``oauth_accounts`` row."""

    provider: str
    user_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None

    @property
    def identity(self) -> ProviderIdentity:
        return ProviderIdentity(
            user_id=self.user_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
        )

    @property
    def tokens(self) -> TokenPair | None:
        """The stored pair, or None when no usable access token is on file."""
        if not self.access_token or self.token_expires_at is None:
            return None
        return TokenPair(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.token_expires_at,
        )

    @classmethod
    def from_record(cls, record: asyncpg.Record) -> "StoredAccount":
        return cls(**dict(record))


class TokenStore:
    """asyncpg-backed token store.

    Every write is a single statement, so concurrent writers resolve as
    last-write-wins at row level.
    """

    def __init__(self, pool: asyncpg.Pool | None = None) -> None:
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        return self._pool or get_pool()

    async def get_account(self, provider: str, user_id: str) -> StoredAccount | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ACCOUNT_COLUMNS} FROM oauth_accounts "
                "WHERE provider = $1 AND user_id = $2",
                provider,
                user_id,
            )
        return StoredAccount.from_record(row) if row else None

    async def list_accounts_with_refresh_tokens(self, provider: str) -> list[StoredAccount]:
        """All accounts for ``provider`` that can be refreshed, ordered by user id."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ACCOUNT_COLUMNS} FROM oauth_accounts "
                "WHERE provider = $1 AND refresh_token IS NOT NULL "
                "ORDER BY user_id",
                provider,
            )
        return [StoredAccount.from_record(r) for r in rows]

    async def update_tokens(self, provider: str, user_id: str, tokens: TokenPair) -> None:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                "UPDATE oauth_accounts SET access_token = $3, refresh_token = $4, "
                "token_expires_at = $5, updated_at = NOW() "
                "WHERE provider = $1 AND user_id = $2",
                provider,
                user_id,
                tokens.access_token,
                tokens.refresh_token,
                tokens.expires_at,
            )
        if status.endswith(" 0"):
            logger.warning("No %s account %s to update tokens for", provider, user_id)

    async def upsert_identity(
        self,
        provider: str,
        identity: ProviderIdentity,
        tokens: TokenPair | None = None,
    ) -> None:
        """Insert or update an account's profile, and its tokens when given.

        Without ``tokens`` the stored pair is left untouched.
        """
        async with self.pool.acquire() as conn:
            if tokens is None:
                await conn.execute(
                    "INSERT INTO oauth_accounts (provider, user_id, email, first_name, last_name) "
                    "VALUES ($1, $2, $3, $4, $5) "
                    "ON CONFLICT (provider, user_id) DO UPDATE SET "
                    "email = EXCLUDED.email, first_name = EXCLUDED.first_name, "
                    "last_name = EXCLUDED.last_name, updated_at = NOW()",
                    provider,
                    identity.user_id,
                    identity.email,
                    identity.first_name,
                    identity.last_name,
                )
                return
            await conn.execute(
                "INSERT INTO oauth_accounts (provider, user_id, email, first_name, last_name, "
                "access_token, refresh_token, token_expires_at) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8) "
                "ON CONFLICT (provider, user_id) DO UPDATE SET "
                "email = EXCLUDED.email, first_name = EXCLUDED.first_name, "
                "last_name = EXCLUDED.last_name, access_token = EXCLUDED.access_token, "
                "refresh_token = COALESCE(EXCLUDED.refresh_token, oauth_accounts.refresh_token), "
                "token_expires_at = EXCLUDED.token_expires_at, updated_at = NOW()",
                provider,
                identity.user_id,
                identity.email,
                identity.first_name,
                identity.last_name,
                tokens.access_token,
                tokens.refresh_token,
                tokens.expires_at,
            )
