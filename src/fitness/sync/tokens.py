"""Token refresh policy for provider accounts.

The service owns three decisions:

- how a token endpoint response becomes a stored pair (expiry minus a
  safety buffer, keep the old refresh token when the provider does not
  rotate it),
- when a stored pair is stale enough to refresh (lookahead window),
- how the scheduled job refreshes every account (forced, sequential,
  one failure never stops the loop).

The store only needs the four methods of ``TokenStoreProtocol``; the
asyncpg implementation lives in ``src.services.token_store``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Protocol

from src.fitness.base import (
    ProviderAdapter,
    ProviderError,
    ProviderIdentity,
    TokenGrant,
    TokenPair,
)
from src.fitness.config_loader import SyncConfig, get_sync_config
from src.models.base import utc_now

logger = logging.getLogger("livedata.tokens")


class StoredAccountProtocol(Protocol):
    user_id: str
    first_name: str | None
    last_name: str | None
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None


class TokenStoreProtocol(Protocol):
    async def get_account(self, provider: str, user_id: str) -> StoredAccountProtocol | None: ...

    async def list_accounts_with_refresh_tokens(
        self, provider: str
    ) -> list[StoredAccountProtocol]: ...

    async def update_tokens(self, provider: str, user_id: str, tokens: TokenPair) -> None: ...

    async def upsert_identity(
        self, provider: str, identity: ProviderIdentity, tokens: TokenPair | None = None
    ) -> None: ...


@dataclass
class RefreshSummary:
    """Outcome of ``refresh_all``."""

    successful: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def _account_label(account: StoredAccountProtocol) -> str:
    name = " ".join(p for p in (account.first_name, account.last_name) if p)
    return f"{name} ({account.user_id})" if name else str(account.user_id)


class TokenRefreshService:
    """Keep one provider's stored token pairs fresh.

    Usage::

        service = TokenRefreshService(WhoopAdapter(...), TokenStore())
        pair = await service.get_fresh_tokens("12345")
        summary = await service.refresh_all()
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        store: TokenStoreProtocol,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._adapter = adapter
        self._store = store
        self._config = config or get_sync_config()
        self._clock = clock

    @property
    def provider(self) -> str:
        return self._adapter.SOURCE_ID

    # ------------------------------------------------------------------
    # Single refresh
    # ------------------------------------------------------------------

    def pair_from_grant(
        self, grant: TokenGrant, previous_refresh_token: str | None = None
    ) -> TokenPair:
        """Apply the expiry buffer and refresh-token rotation rule to a grant."""
        buffer = self._config.tokens.expiry_buffer_seconds
        return TokenPair(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or previous_refresh_token,
            expires_at=self._clock() + timedelta(seconds=grant.expires_in - buffer),
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair. Nothing is persisted.

        Raises:
            RefreshError: If the provider rejects the refresh token.
        """
        grant = await self._adapter.refresh_token(refresh_token)
        logger.info("%s: access token refreshed", self._adapter.DISPLAY_NAME)
        return self.pair_from_grant(grant, previous_refresh_token=refresh_token)

    async def get_fresh_tokens(
        self, user_id: str, force_refresh: bool = False
    ) -> TokenPair | None:
        """Return a usable pair for ``user_id``, refreshing and persisting it if due.

        Returns None when the account is unknown or has no refresh token;
        the user must sign in again.

        Raises:
            RefreshError: If a due refresh is rejected by the provider.
        """
        account = await self._store.get_account(self.provider, user_id)
        if account is None:
            logger.warning("%s user %s not found", self.provider, user_id)
            return None
        if not account.refresh_token:
            logger.warning(
                "%s user %s has no refresh token; re-authentication required",
                self.provider, user_id,
            )
            return None

        now = self._clock()
        lookahead = self._config.tokens.refresh_lookahead_seconds
        expires_at = account.token_expires_at
        if (
            not force_refresh
            and account.access_token
            and expires_at is not None
            and (expires_at - now).total_seconds() >= lookahead
        ):
            return TokenPair(account.access_token, account.refresh_token, expires_at)

        reason = "forced" if force_refresh else f"expires {expires_at or 'unknown'}"
        logger.info("%s user %s token refresh (%s)", self.provider, user_id, reason)
        pair = await self.refresh(account.refresh_token)
        await self._store.update_tokens(self.provider, user_id, pair)
        logger.info(
            "%s user %s tokens updated, expire at %s",
            self.provider, user_id, pair.expires_at.isoformat(),
        )
        return pair

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def refresh_all(self) -> RefreshSummary:
        """Force-refresh every account that has a refresh token.

        Accounts are processed one at a time with a short pause between
        them.  Any failure for one account, whether from the provider or
        the store, is counted and described in ``errors`` and the loop moves
        on.
        """
        accounts = await self._store.list_accounts_with_refresh_tokens(self.provider)
        summary = RefreshSummary()
        delay = self._config.tokens.refresh_all_delay_ms / 1000.0
        logger.info("%s: force-refreshing %d accounts", self.provider, len(accounts))

        for index, account in enumerate(accounts):
            label = _account_label(account)
            try:
                pair = await self.get_fresh_tokens(account.user_id, force_refresh=True)
            except Exception as exc:
                summary.failed += 1
                detail = str(exc) or type(exc).__name__
                summary.errors.append(f"Failed to refresh tokens for {label}: {detail}")
                logger.error(
                    "%s: refresh failed for %s: %s", self.provider, label, detail,
                    exc_info=not isinstance(exc, ProviderError),
                )
            else:
                if pair is None:
                    summary.failed += 1
                    summary.errors.append(f"Failed to refresh tokens for {label}")
                else:
                    summary.successful += 1
            if delay and index < len(accounts) - 1:
                await asyncio.sleep(delay)

        logger.info(
            "%s: token refresh complete, %d successful, %d failed",
            self.provider, summary.successful, summary.failed,
        )
        return summary

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    async def complete_authorization(
        self, code: str, redirect_uri: str
    ) -> tuple[ProviderIdentity, TokenPair]:
        """Exchange an authorization code, look up the identity and store both.

        Raises:
            RefreshError: If the code exchange is rejected.
            FetchError:   If the profile lookup fails.
        """
        grant = await self._adapter.exchange_code(code, redirect_uri)
        if not grant.refresh_token:
            # Without the offline scope the account can never be refreshed.
            logger.warning("%s: authorization returned no refresh token", self.provider)
        pair = self.pair_from_grant(grant)
        identity = await self._adapter.get_profile(pair.access_token)
        await self._store.upsert_identity(self.provider, identity, pair)
        logger.info("%s: signed in user %s", self.provider, identity.user_id)
        return identity, pair
