"""Scheduled sync orchestrator.

One run, for one provider:
1. Force-refresh every account's tokens
2. Re-read the accounts; any still lacking an access token fails as "needs re-authentication"
3. Per account, sequentially:
   a. Fetch the profile and upsert the identity
   b. Compute the trailing window (fully elapsed days only)
   c. Fetch every record kind for the window
   d. Keep only records whose timestamp falls inside the window
   e. Upsert each kind, counting rows that were new
4. Aggregate per-user results into one summary

A failure inside one account's pipeline is recorded and the run moves on
to the next account.  Re-running the same window is safe: every write is an
upsert keyed by the provider's id.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol, Sequence

from src.fitness.base import ProviderAdapter, SyncWindow
from src.fitness.config_loader import SyncConfig, get_sync_config
from src.fitness.sync.dedup import filter_to_window, unique_in_order
from src.fitness.sync.tokens import (
    RefreshSummary,
    StoredAccountProtocol,
    TokenRefreshService,
    TokenStoreProtocol,
)
from src.models.base import utc_now

logger = logging.getLogger("livedata.sync")


class NoAccountsError(RuntimeError):
    """Raised when a run finds no account to sync."""


class UpsertResultProtocol(Protocol):
    inserted: int
    errors: list[str]


class RecordStoreProtocol(Protocol):
    async def upsert(
        self, source: str, kind: str, owner_id: str, records: Sequence[Any]
    ) -> UpsertResultProtocol: ...


@dataclass
class UserSyncResult:
    """Result of syncing one account.

    Attributes:
        user_id:   Provider user id.
        name:      Display label used in logs and errors.
        success:   False when the account's pipeline raised.
        new_rows:  Record kind → number of rows inserted (not updated).
        errors:    Error messages for this account, including per-record failures.
    """

    user_id: str
    name: str
    success: bool = True
    new_rows: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def to_json(self) -> dict:
        payload: dict[str, Any] = {
            "userId": self.user_id,
            "name": self.name,
            "success": self.success,
        }
        for kind, count in self.new_rows.items():
            payload[f"new{kind[:1].upper()}{kind[1:]}"] = count
        payload["errors"] = list(self.errors)
        return payload


@dataclass
class SyncRunSummary:
    """Aggregate result of one scheduled run."""

    provider: str
    window: SyncWindow
    token_refresh: RefreshSummary
    user_results: list[UserSyncResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_users(self) -> int:
        return len(self.user_results)

    @property
    def successful_users(self) -> int:
        return sum(1 for r in self.user_results if r.success)

    @property
    def failed_users(self) -> int:
        return self.total_users - self.successful_users

    def to_json(self) -> dict:
        return {
            "totalUsers": self.total_users,
            "successfulUsers": self.successful_users,
            "failedUsers": self.failed_users,
            "userResults": [r.to_json() for r in self.user_results],
            "errors": list(self.errors),
            "tokenRefreshResults": self.token_refresh.to_json(),
            "window": {
                "start": self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
            },
        }


def _label(account: StoredAccountProtocol) -> str:
    name = " ".join(p for p in (account.first_name, account.last_name) if p)
    return name or f"User {account.user_id}"


class SyncOrchestrator:
    """Run the scheduled sync for one provider.

    Usage::

        orchestrator = SyncOrchestrator(
            adapter=WhoopAdapter(...),
            token_service=TokenRefreshService(adapter, token_store),
            token_store=token_store,
            record_store=RecordStore(),
        )
        summary = await orchestrator.run()
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        token_service: TokenRefreshService,
        token_store: TokenStoreProtocol,
        record_store: RecordStoreProtocol,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._adapter = adapter
        self._token_service = token_service
        self._token_store = token_store
        self._record_store = record_store
        self._config = config or get_sync_config()
        self._clock = clock

    @property
    def provider(self) -> str:
        return self._adapter.SOURCE_ID

    def current_window(self) -> SyncWindow:
        cfg = self._config.sync
        return SyncWindow.trailing(self._clock(), days=cfg.window_days, tz=cfg.tzinfo)

    async def run(self) -> SyncRunSummary:
        """Execute one full run.

        Raises:
            NoAccountsError: If no account has a refresh token.
        """
        logger.info("%s sync: starting", self._adapter.DISPLAY_NAME)
        token_refresh = await self._token_service.refresh_all()

        accounts = await self._token_store.list_accounts_with_refresh_tokens(self.provider)
        if not accounts:
            raise NoAccountsError(f"No {self._adapter.DISPLAY_NAME} users found in database")

        window = self.current_window()
        summary = SyncRunSummary(
            provider=self.provider, window=window, token_refresh=token_refresh
        )
        logger.info(
            "%s sync: %d accounts, window %s → %s",
            self._adapter.DISPLAY_NAME, len(accounts),
            window.start.isoformat(), window.end.isoformat(),
        )

        delay = self._config.sync.user_delay_ms / 1000.0
        for index, account in enumerate(accounts):
            result = await self.sync_account(account, window)
            summary.user_results.append(result)
            summary.errors.extend(f"{result.name}: {e}" for e in result.errors)
            if delay and len(accounts) > 1 and index < len(accounts) - 1:
                await asyncio.sleep(delay)

        logger.info(
            "%s sync: complete, %d/%d users successful, %d errors",
            self._adapter.DISPLAY_NAME, summary.successful_users,
            summary.total_users, len(summary.errors),
        )
        return summary

    async def sync_account(
        self, account: StoredAccountProtocol, window: SyncWindow
    ) -> UserSyncResult:
        """Fetch, filter and store one account's records for ``window``.

        Never raises; failures end up in the result.
        """
        result = UserSyncResult(user_id=str(account.user_id), name=_label(account))

        if not account.access_token:
            result.success = False
            result.errors.append("No access token available, needs re-authentication")
            logger.warning("%s sync: %s needs re-authentication", self.provider, result.name)
            return result

        try:
            await self._sync_records(account, window, result)
        except Exception as exc:
            result.success = False
            result.errors.append(str(exc) or type(exc).__name__)
            logger.error(
                "%s sync failed for %s: %s", self.provider, result.name, exc, exc_info=True
            )
        return result

    async def _sync_records(
        self, account: StoredAccountProtocol, window: SyncWindow, result: UserSyncResult
    ) -> None:
        access_token = account.access_token

        identity = await self._adapter.get_profile(access_token)
        await self._token_store.upsert_identity(self.provider, identity)
        if identity.first_name or identity.last_name:
            result.name = identity.display_name

        batches = await self._adapter.collect_window(window, access_token)

        for kind in self._adapter.RECORD_KINDS:
            fetched = batches.get(kind, [])
            in_window = unique_in_order(filter_to_window(fetched, window))
            upserted = await self._record_store.upsert(
                self.provider, kind, result.user_id, in_window
            )
            result.new_rows[kind] = upserted.inserted
            result.errors.extend(upserted.errors)
            logger.info(
                "%s sync: %s %s → %d fetched, %d in window, %d new",
                self.provider, result.name, kind, len(fetched), len(in_window), upserted.inserted,
            )
