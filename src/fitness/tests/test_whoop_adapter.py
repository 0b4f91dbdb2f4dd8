"""Tests for the Whoop adapter — pagination, cycle lookup and payload validation."""

from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.fitness.adapters.whoop import WhoopAdapter
from src.fitness.base import FetchError, RefreshError, SyncWindow
from src.fitness.tests.conftest import (
    WINDOW_START,
    FakeWhoopApi,
    day,
    whoop_cycle,
    whoop_recovery,
    whoop_workout,
    zero_delay_config,
)
from src.models.whoop import WhoopRecovery

SINCE = datetime(2025, 7, 8, tzinfo=timezone.utc)


def _adapter(handler) -> WhoopAdapter:
    return WhoopAdapter(
        client_id="whoop-client",
        client_secret="whoop-secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        config=zero_delay_config(),
    )


class _PagedWorkouts:
    """Serves ``pages`` as consecutive cursor pages of the workout collection."""

    def __init__(self, pages: list[list[dict]], endless: bool = False) -> None:
        self.pages = pages
        self.endless = endless
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = int(request.url.params.get("nextToken", "0"))
        if self.endless:
            return httpx.Response(200, json={"records": [], "next_token": str(index + 1)})
        has_more = index + 1 < len(self.pages)
        return httpx.Response(
            200,
            json={
                "records": self.pages[index],
                "next_token": str(index + 1) if has_more else None,
            },
        )


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class TestWhoopPagination:
    @pytest.mark.asyncio
    async def test_follows_next_token_and_keeps_page_order(self) -> None:
        pages = [
            [whoop_workout("w1", 1, day(-2)), whoop_workout("w2", 1, day(-2, hour=12))],
            [whoop_workout("w3", 1, day(-1))],
            [whoop_workout("w4", 1, day(-1, hour=20))],
        ]
        api = _PagedWorkouts(pages)

        records = await _adapter(api).get_records_since("workouts", SINCE, "token")

        assert [r.id for r in records] == ["w1", "w2", "w3", "w4"]
        assert len(api.requests) == 3
        assert "nextToken" not in api.requests[0].url.params
        assert api.requests[1].url.params["nextToken"] == "1"
        assert api.requests[2].url.params["nextToken"] == "2"

    @pytest.mark.asyncio
    async def test_request_params_and_headers(self) -> None:
        api = _PagedWorkouts([[]])

        await _adapter(api).get_records_since(
            "workouts", SINCE, "token-abc", until=datetime(2025, 7, 9, 12, tzinfo=timezone.utc)
        )

        request = api.requests[0]
        assert request.url.path == "/developer/v2/activity/workout"
        assert request.url.params["limit"] == "25"
        assert request.url.params["start"] == "2025-07-08T00:00:00.000Z"
        assert request.url.params["end"] == "2025-07-09T12:00:00.000Z"
        assert request.headers["Authorization"] == "Bearer token-abc"

    @pytest.mark.asyncio
    async def test_stops_at_page_cap(self, caplog: pytest.LogCaptureFixture) -> None:
        api = _PagedWorkouts([], endless=True)

        records = await _adapter(api).get_records_since("workouts", SINCE, "token")

        assert records == []
        assert len(api.requests) == 10
        assert "page cap" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_kind_raises(self) -> None:
        with pytest.raises(ValueError):
            await _adapter(_PagedWorkouts([[]])).get_records_since("steps", SINCE, "token")


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------


class TestWhoopPayloads:
    @pytest.mark.asyncio
    async def test_malformed_records_are_dropped(self) -> None:
        broken = {"id": "w-broken", "user_id": 1}  # no start
        api = _PagedWorkouts([[whoop_workout("w1", 1, day(-1)), broken]])

        records = await _adapter(api).get_records_since("workouts", SINCE, "token")

        assert [r.id for r in records] == ["w1"]

    @pytest.mark.asyncio
    async def test_zone_duration_accepts_both_spellings(self) -> None:
        legacy = whoop_workout("w-legacy", 1, day(-1))
        legacy["score"]["zone_duration"] = legacy["score"].pop("zone_durations")
        api = _PagedWorkouts([[whoop_workout("w1", 1, day(-1)), legacy]])

        records = await _adapter(api).get_records_since("workouts", SINCE, "token")

        assert [r.score.zone_durations.zone_two_milli for r in records] == [1_200_000, 1_200_000]

    @pytest.mark.asyncio
    async def test_fetch_error_carries_status_and_message(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"message": "Rate limit exceeded"})

        with pytest.raises(FetchError) as exc_info:
            await _adapter(handler).get_records_since("sleep", SINCE, "token")

        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Rate limit exceeded"

    @pytest.mark.asyncio
    async def test_token_error_without_json_body_uses_reason_phrase(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="upstream down")

        with pytest.raises(RefreshError) as exc_info:
            await _adapter(handler).refresh_token("rt-1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.message == "Service Unavailable"
        assert exc_info.value.error_code is None


# ---------------------------------------------------------------------------
# Cycles and window collection
# ---------------------------------------------------------------------------


class TestWhoopCycles:
    @pytest.mark.asyncio
    async def test_cycles_resolved_once_per_distinct_id(self, whoop_api: FakeWhoopApi) -> None:
        whoop_api.add_user(1, cycles=[whoop_cycle(10, 1, day(-1)), whoop_cycle(11, 1, day(-2))])
        adapter = _adapter(whoop_api)

        batch = [
            WhoopRecovery.model_validate(whoop_recovery(10, 1, day(-1))),
            WhoopRecovery.model_validate(whoop_recovery(11, 1, day(-2))),
            WhoopRecovery.model_validate(whoop_recovery(10, 1, day(-1, hour=9))),
        ]
        cycles = await adapter.get_cycles_for_recoveries(batch, "at-1-0")

        assert [c.id for c in cycles] == [10, 11]
        lookups = [r for r in whoop_api.data_calls if "/cycle/" in r.url.path]
        assert len(lookups) == 2

    @pytest.mark.asyncio
    async def test_missing_cycle_is_skipped(self, whoop_api: FakeWhoopApi) -> None:
        whoop_api.add_user(1, cycles=[whoop_cycle(10, 1, day(-1))])
        adapter = _adapter(whoop_api)

        batch = [
            WhoopRecovery.model_validate(whoop_recovery(10, 1, day(-1))),
            WhoopRecovery.model_validate(whoop_recovery(99, 1, day(-2))),
        ]
        cycles = await adapter.get_cycles_for_recoveries(batch, "at-1-0")

        assert [c.id for c in cycles] == [10]

    @pytest.mark.asyncio
    async def test_collect_window_returns_every_kind(self, whoop_api: FakeWhoopApi) -> None:
        whoop_api.add_user(
            1,
            recovery=[whoop_recovery(10, 1, day(-1))],
            workouts=[whoop_workout("w1", 1, day(-1))],
            cycles=[whoop_cycle(10, 1, day(-1))],
        )
        window = SyncWindow.trailing(day(0), days=2)

        batches = await _adapter(whoop_api).collect_window(window, "at-1-0")

        assert window.start == WINDOW_START
        assert set(batches) == {"cycles", "sleep", "recovery", "workouts"}
        assert [c.id for c in batches["cycles"]] == [10]
        assert [w.id for w in batches["workouts"]] == ["w1"]
        assert batches["sleep"] == []


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


class TestWhoopOAuth:
    def test_authorization_url(self) -> None:
        url = _adapter(_PagedWorkouts([[]])).authorization_url(
            "http://localhost:8000/api/auth/whoop/callback", "state-1"
        )

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == WhoopAdapter.AUTH_URL
        assert params["client_id"] == ["whoop-client"]
        assert params["response_type"] == ["code"]
        assert params["state"] == ["state-1"]
        assert params["scope"] == ["offline read:recovery read:cycles"]

    @pytest.mark.asyncio
    async def test_get_profile(self, whoop_api: FakeWhoopApi) -> None:
        whoop_api.add_user(3, first_name="Ari", last_name="Stone")

        identity = await _adapter(whoop_api).get_profile("at-3-0")

        assert identity.user_id == "3"
        assert identity.email == "user3@example.com"
        assert identity.display_name == "Ari Stone"
