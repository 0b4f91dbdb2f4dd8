"""Shared fixtures and test doubles for the sync pipeline.

Fake stores with the same row semantics as the asyncpg stores, a fake Whoop
API served through ``httpx.MockTransport``, payload builders and a fixed
clock.  The route and store tests import the doubles from here.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from urllib.parse import parse_qs

import httpx
import pytest

from src.fitness.adapters.whoop import WhoopAdapter
from src.fitness.base import ProviderIdentity, TokenPair
from src.fitness.config_loader import SyncConfig, build_sync_config
from src.fitness.sync.tokens import TokenRefreshService
from src.services.record_store import KindSummary, UpsertResult
from src.services.token_store import StoredAccount
# Mid-afternoon, so the trailing window is 2025-07-08 00:00 → 2025-07-09 23:59:59.999999 UTC
FIXED_NOW = datetime(2025, 7, 10, 15, 30, tzinfo=timezone.utc)
WINDOW_START = datetime(2025, 7, 8, tzinfo=timezone.utc)

AUTH_SECRET = "test-auth-secret-with-at-least-32-bytes"
CRON_SECRET = "test-cron-secret"


def fixed_clock() -> datetime:
    return FIXED_NOW


def iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def day(offset: int, hour: int = 8) -> datetime:
    """``offset`` days relative to FIXED_NOW's date, at ``hour`` UTC."""
    base = datetime(FIXED_NOW.year, FIXED_NOW.month, FIXED_NOW.day, tzinfo=timezone.utc)
    return base + timedelta(days=offset, hours=hour)


def zero_delay_config() -> SyncConfig:
    """Production tunables with every delay set to zero."""
    return build_sync_config(
        {
            "version": "test",
            "tokens": {
                "expiry_buffer_seconds": 300,
                "refresh_lookahead_seconds": 600,
                "refresh_all_delay_ms": 0,
            },
            "sync": {
                "window_days": 2,
                "timezone": "UTC",
                "user_delay_ms": 0,
                "backfill_days": 30,
                "max_backfill_days": 90,
            },
            "providers": {
                "whoop": {
                    "page_size": 25,
                    "max_pages": 10,
                    "send_scope_on_refresh": True,
                    "scopes": ["offline", "read:recovery", "read:cycles"],
                },
                "strava": {
                    "page_size": 200,
                    "max_pages": 10,
                    "page_delay_ms": 0,
                    "scopes": ["read", "activity:read_all"],
                },
            },
        }
    )


# ---------------------------------------------------------------------------
# Whoop payload builders
# ---------------------------------------------------------------------------


def whoop_cycle(cycle_id: int, user_id: int, end: datetime, scored: bool = True) -> dict:
    return {
        "id": cycle_id,
        "user_id": user_id,
        "start": iso(end - timedelta(hours=20)),
        "end": iso(end),
        "timezone_offset": "-04:00",
        "score_state": "SCORED" if scored else "PENDING_SCORE",
        "score": (
            {"strain": 12.4, "kilojoule": 9000.5, "average_heart_rate": 68, "max_heart_rate": 171}
            if scored else None
        ),
    }


def whoop_recovery(
    cycle_id: int,
    user_id: int,
    created_at: datetime,
    sleep_id: str | None = None,
    scored: bool = True,
) -> dict:
    return {
        "cycle_id": cycle_id,
        "sleep_id": sleep_id,
        "user_id": user_id,
        "created_at": iso(created_at),
        "updated_at": iso(created_at),
        "score_state": "SCORED" if scored else "PENDING_SCORE",
        "score": (
            {
                "user_calibrating": False,
                "recovery_score": 71.0,
                "resting_heart_rate": 52.0,
                "hrv_rmssd_milli": 61.3,
                "spo2_percentage": 96.1,
                "skin_temp_celsius": 33.6,
            }
            if scored else None
        ),
    }


def whoop_sleep(sleep_id: str, user_id: int, end: datetime, cycle_id: int | None = None) -> dict:
    payload = {
        "id": sleep_id,
        "user_id": user_id,
        "start": iso(end - timedelta(hours=7)),
        "end": iso(end),
        "timezone_offset": "-04:00",
        "nap": False,
        "score_state": "SCORED",
        "score": {
            "stage_summary": {
                "total_in_bed_time_milli": 27_000_000,
                "total_awake_time_milli": 1_800_000,
                "total_light_sleep_time_milli": 12_000_000,
                "total_slow_wave_sleep_time_milli": 6_000_000,
                "total_rem_sleep_time_milli": 7_200_000,
                "disturbance_count": 9,
            },
            "respiratory_rate": 15.2,
            "sleep_performance_percentage": 88.0,
            "sleep_efficiency_percentage": 93.3,
        },
    }
    if cycle_id is not None:
        payload["cycle_id"] = cycle_id
    return payload


def whoop_workout(workout_id: str, user_id: int, end: datetime) -> dict:
    return {
        "id": workout_id,
        "user_id": user_id,
        "start": iso(end - timedelta(hours=1)),
        "end": iso(end),
        "sport_id": 0,
        "sport_name": "running",
        "score_state": "SCORED",
        "score": {
            "strain": 9.8,
            "average_heart_rate": 151,
            "max_heart_rate": 178,
            "kilojoule": 2100.0,
            "distance_meter": 8046.7,
            "zone_durations": {"zone_two_milli": 1_200_000, "zone_three_milli": 1_500_000},
        },
    }


# ---------------------------------------------------------------------------
# Fake Whoop API (httpx.MockTransport handler)
# ---------------------------------------------------------------------------


class FakeWhoopApi:
    """In-memory stand-in for the Whoop token endpoint and v2 data API.

    Every refresh issues a new ``at-<user>-<n>`` / ``rt-<user>-<n>`` pair.
    ``fail`` holds ``(user_id, path_suffix)`` pairs answered with HTTP 500.
    Refresh tokens in ``garbled`` get a 200 with an HTML body.
    """

    def __init__(self) -> None:
        self.users: dict[int, dict[str, Any]] = {}
        self.refresh_tokens: dict[str, int] = {}
        self.access_tokens: dict[str, int] = {}
        self.revoked: set[str] = set()
        self.garbled: set[str] = set()
        self.fail: set[tuple[int, str]] = set()
        self.omit_refresh_token = False
        self.requests: list[httpx.Request] = []
        self.token_forms: list[dict[str, str]] = []
        self._issued = 0

    def add_user(
        self,
        user_id: int,
        first_name: str = "Test",
        last_name: str | None = None,
        recovery: list[dict] | None = None,
        sleep: list[dict] | None = None,
        workouts: list[dict] | None = None,
        cycles: list[dict] | None = None,
    ) -> str:
        """Register a user and return their initial refresh token."""
        self.users[user_id] = {
            "profile": {
                "user_id": user_id,
                "email": f"user{user_id}@example.com",
                "first_name": first_name,
                "last_name": last_name or str(user_id),
            },
            "recovery": recovery or [],
            "sleep": sleep or [],
            "workouts": workouts or [],
            "cycles": {c["id"]: c for c in cycles or []},
        }
        token = f"rt-{user_id}-0"
        self.refresh_tokens[token] = user_id
        self.access_tokens[f"at-{user_id}-0"] = user_id
        return token

    @property
    def token_calls(self) -> int:
        return len(self.token_forms)

    @property
    def data_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/developer/v2/" in r.url.path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/oauth2/token":
            return self._token(request)
        return self._data(request)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_forms.append(form)
        if form.get("grant_type") == "authorization_code":
            user_id = int(form["code"].removeprefix("code-"))
        else:
            token = form.get("refresh_token", "")
            if token in self.garbled:
                return httpx.Response(200, text="<html>gateway</html>")
            if token in self.revoked or token not in self.refresh_tokens:
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "refresh token is invalid"},
                )
            user_id = self.refresh_tokens[token]

        self._issued += 1
        access = f"at-{user_id}-{self._issued}"
        refresh = f"rt-{user_id}-{self._issued}"
        self.access_tokens[access] = user_id
        self.refresh_tokens[refresh] = user_id
        body = {"access_token": access, "expires_in": 3600, "token_type": "bearer"}
        if not self.omit_refresh_token:
            body["refresh_token"] = refresh
        return httpx.Response(200, json=body)

    def _data(self, request: httpx.Request) -> httpx.Response:
        bearer = request.headers.get("Authorization", "").removeprefix("Bearer ")
        user_id = self.access_tokens.get(bearer)
        if user_id is None:
            return httpx.Response(401, json={"message": "Authorization was not valid"})
        path = request.url.path.removeprefix("/developer/v2")
        if (user_id, path) in self.fail:
            return httpx.Response(500, json={"message": "Internal Server Error"})
        user = self.users[user_id]

        if path == "/user/profile/basic":
            return httpx.Response(200, json=user["profile"])
        if path.startswith("/cycle/"):
            cycle = user["cycles"].get(int(path.rsplit("/", 1)[1]))
            if cycle is None:
                return httpx.Response(404, json={"message": "Cycle not found"})
            return httpx.Response(200, json=cycle)
        collections = {
            "/recovery": "recovery",
            "/activity/sleep": "sleep",
            "/activity/workout": "workouts",
        }
        if path in collections:
            return httpx.Response(200, json={"records": user[collections[path]], "next_token": None})
        return httpx.Response(404, json={"message": f"No route {path}"})


# ---------------------------------------------------------------------------
# Fake stores
# ---------------------------------------------------------------------------


class FakeTokenStore:
    """Dict-backed token store mirroring TokenStore's row semantics."""

    def __init__(self) -> None:
        self.accounts: dict[tuple[str, str], StoredAccount] = {}
        self.updates: list[tuple[str, str, TokenPair]] = []
        self.identity_upserts: list[tuple[str, ProviderIdentity]] = []

    def add(
        self,
        provider: str,
        user_id: str,
        refresh_token: str | None,
        access_token: str | None = None,
        expires_at: datetime | None = None,
        first_name: str | None = "Test",
        last_name: str | None = None,
    ) -> StoredAccount:
        account = StoredAccount(
            provider=provider,
            user_id=user_id,
            first_name=first_name,
            last_name=last_name or user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=expires_at,
        )
        self.accounts[(provider, user_id)] = account
        return account

    async def get_account(self, provider: str, user_id: str) -> StoredAccount | None:
        return self.accounts.get((provider, user_id))

    async def list_accounts_with_refresh_tokens(self, provider: str) -> list[StoredAccount]:
        return sorted(
            (a for (p, _), a in self.accounts.items() if p == provider and a.refresh_token),
            key=lambda a: a.user_id,
        )

    async def update_tokens(self, provider: str, user_id: str, tokens: TokenPair) -> None:
        self.updates.append((provider, user_id, tokens))
        account = self.accounts[(provider, user_id)]
        account.access_token = tokens.access_token
        account.refresh_token = tokens.refresh_token
        account.token_expires_at = tokens.expires_at

    async def upsert_identity(
        self, provider: str, identity: ProviderIdentity, tokens: TokenPair | None = None
    ) -> None:
        self.identity_upserts.append((provider, identity))
        account = self.accounts.get((provider, identity.user_id))
        if account is None:
            account = StoredAccount(provider=provider, user_id=identity.user_id)
            self.accounts[(provider, identity.user_id)] = account
        account.email = identity.email
        account.first_name = identity.first_name
        account.last_name = identity.last_name
        if tokens is not None:
            account.access_token = tokens.access_token
            account.refresh_token = tokens.refresh_token or account.refresh_token
            account.token_expires_at = tokens.expires_at


class FakeRecordStore:
    """Keyed by external id, like the tables' primary keys."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], dict[str, Any]] = defaultdict(dict)
        self.owners: dict[tuple[str, str, str], str] = {}
        self.writes = 0

    async def upsert(
        self, source: str, kind: str, owner_id: str, records: Sequence[Any]
    ) -> UpsertResult:
        result = UpsertResult()
        table = self.rows[(source, kind)]
        for record in records:
            self.writes += 1
            if record.external_id in table:
                result.updated += 1
            else:
                result.inserted += 1
            table[record.external_id] = record
            self.owners[(source, kind, record.external_id)] = owner_id
        return result

    async def summary(
        self, source: str, owner_id: str, recent_limit: int = 10
    ) -> dict[str, KindSummary]:
        summaries: dict[str, KindSummary] = {}
        for (table_source, kind), table in self.rows.items():
            if table_source != source:
                continue
            owned = sorted(
                (r for key, r in table.items() if self.owners[(source, kind, key)] == owner_id),
                key=lambda r: r.window_timestamp or datetime.min.replace(tzinfo=timezone.utc),
                reverse=True,
            )
            summaries[kind] = KindSummary(
                total=len(owned),
                earliest=owned[-1].window_timestamp if owned else None,
                latest=owned[0].window_timestamp if owned else None,
                recent=[r.model_dump(mode="json") for r in owned[:recent_limit]],
            )
        return summaries

    def ids(self, source: str, kind: str) -> set[str]:
        return set(self.rows.get((source, kind), {}))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    return zero_delay_config()


@pytest.fixture
def whoop_api() -> FakeWhoopApi:
    return FakeWhoopApi()


@pytest.fixture
def whoop_adapter(whoop_api: FakeWhoopApi, sync_config: SyncConfig) -> WhoopAdapter:
    return WhoopAdapter(
        client_id="whoop-client",
        client_secret="whoop-secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(whoop_api)),
        config=sync_config,
    )


@pytest.fixture
def token_store() -> FakeTokenStore:
    return FakeTokenStore()


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def token_service(
    whoop_adapter: WhoopAdapter, token_store: FakeTokenStore, sync_config: SyncConfig
) -> TokenRefreshService:
    return TokenRefreshService(whoop_adapter, token_store, config=sync_config, clock=fixed_clock)
