"""App fixtures for the route tests: fake stores and a fake Whoop API behind the real routers."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.config import Settings, get_settings
from src.dependencies import (
    get_adapter_factory,
    get_record_store,
    get_token_store,
)
from src.fitness.adapters import build_adapter
from src.fitness.tests.conftest import (
    AUTH_SECRET,
    CRON_SECRET,
    FakeRecordStore,
    FakeTokenStore,
    FakeWhoopApi,
    zero_delay_config,
)
from src.main import create_app


def strava_api(request: httpx.Request) -> httpx.Response:
    """Strava stand-in: one athlete, no activities."""
    if request.url.path.endswith("/oauth/token"):
        return httpx.Response(
            200, json={"access_token": "strava-at", "refresh_token": "strava-rt", "expires_in": 21600}
        )
    if request.url.path.endswith("/athlete"):
        return httpx.Response(200, json={"id": 77, "firstname": "Sam", "lastname": "Ortiz"})
    return httpx.Response(200, json=[])


@pytest.fixture
def settings() -> Settings:
    return Settings(
        auth_secret=AUTH_SECRET,
        cron_secret=CRON_SECRET,
        postgres_url="postgresql://localhost/livedata_test",
        whoop_client_id="whoop-client",
        whoop_client_secret="whoop-secret",
        strava_client_id="strava-client",
        strava_client_secret="strava-secret",
        anthropic_api_key="",
    )


@pytest.fixture
def whoop_api() -> FakeWhoopApi:
    return FakeWhoopApi()


@pytest.fixture
def token_store() -> FakeTokenStore:
    return FakeTokenStore()


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def app(
    settings: Settings,
    whoop_api: FakeWhoopApi,
    token_store: FakeTokenStore,
    record_store: FakeRecordStore,
) -> FastAPI:
    handlers = {"whoop": whoop_api, "strava": strava_api}

    def adapter_factory():
        return lambda source: build_adapter(
            source,
            settings,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handlers[source])),
            config=zero_delay_config(),
        )

    application = create_app()
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_token_store] = lambda: token_store
    application.dependency_overrides[get_record_store] = lambda: record_store
    application.dependency_overrides[get_adapter_factory] = adapter_factory
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    # No context manager: the lifespan (Postgres pool) is not started.
    return TestClient(app)
