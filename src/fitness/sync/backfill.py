"""On-demand collection for a signed-in account.

Two modes:
- ``daily``:      the same trailing window the scheduled run stores
- ``historical``: start of ``today - days`` up to now (default 30 days)

Unlike the scheduled run, tokens are refreshed only when due, and an
account whose refresh token was rejected is reported as needing a new
sign-in instead of being counted as a failed user.

Usage::

    service = CollectionService(orchestrator, token_service, token_store)
    outcome = await service.collect("12345", mode="historical", days=30)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Literal

from src.fitness.base import RefreshError, SyncWindow
from src.fitness.config_loader import SyncConfig, get_sync_config
from src.fitness.sync.orchestrator import SyncOrchestrator, UserSyncResult
from src.fitness.sync.tokens import TokenRefreshService, TokenStoreProtocol
from src.models.base import utc_now

logger = logging.getLogger("livedata.sync.collect")

CollectionMode = Literal["daily", "historical"]

# Token endpoint statuses that mean the stored grant is no longer usable.
_REAUTH_STATUSES = frozenset({400, 401, 403})


class ReauthenticationRequired(Exception):
    """The account has no usable refresh token; the user must sign in again."""


@dataclass
class CollectionOutcome:
    """Result of one on-demand collection.

    Attributes:
        mode:   ``daily`` or ``historical``.
        window: Time range that was fetched and stored.
        result: Per-kind new-row counts and errors for the account.
    """

    mode: CollectionMode
    window: SyncWindow
    result: UserSyncResult

    def to_json(self) -> dict:
        return {
            "success": self.result.success,
            "mode": self.mode,
            "window": {
                "start": self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
            },
            "data": self.result.to_json(),
        }


class CollectionService:
    """Collect one signed-in account's records on demand."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        token_service: TokenRefreshService,
        token_store: TokenStoreProtocol,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orchestrator = orchestrator
        self._token_service = token_service
        self._token_store = token_store
        self._config = config or get_sync_config()
        self._clock = clock

    def window_for(self, mode: CollectionMode, days: int | None = None) -> SyncWindow:
        """Return the window a collection in ``mode`` covers.

        Raises:
            ValueError: If ``days`` is outside 1..max_backfill_days.
        """
        cfg = self._config.sync
        if mode == "daily":
            return SyncWindow.trailing(self._clock(), days=cfg.window_days, tz=cfg.tzinfo)
        span = cfg.backfill_days if days is None else days
        if not 1 <= span <= cfg.max_backfill_days:
            raise ValueError(f"days must be between 1 and {cfg.max_backfill_days}, got {span}")
        return SyncWindow.recent(self._clock(), days=span, tz=cfg.tzinfo)

    async def collect(
        self, user_id: str, mode: CollectionMode = "daily", days: int | None = None
    ) -> CollectionOutcome:
        """Refresh the account's tokens if due, then store ``mode``'s window.

        Raises:
            ReauthenticationRequired: If the account has no refresh token or
                the provider rejected it.
            RefreshError: If the token endpoint failed for another reason.
            ValueError:   If ``days`` is out of range.
        """
        window = self.window_for(mode, days)
        provider = self._token_service.provider

        try:
            pair = await self._token_service.get_fresh_tokens(user_id)
        except RefreshError as exc:
            if exc.status_code in _REAUTH_STATUSES:
                raise ReauthenticationRequired(str(exc)) from exc
            raise
        if pair is None:
            raise ReauthenticationRequired(f"{provider} user {user_id} has no refresh token")

        account = await self._token_store.get_account(provider, user_id)
        if account is None:
            raise ReauthenticationRequired(f"{provider} user {user_id} not found")

        logger.info(
            "%s %s collection for %s: %s → %s",
            provider, mode, user_id, window.start.isoformat(), window.end.isoformat(),
        )
        result = await self._orchestrator.sync_account(account, window)
        return CollectionOutcome(mode=mode, window=window, result=result)
