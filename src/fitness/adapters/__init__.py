"""Fitness provider adapters for Live Data.

Each adapter implements the ProviderAdapter ABC and handles:
- OAuth authorization-code exchange and token refresh
- Identity lookup
- Paging through the provider's record endpoints into validated models

Available adapters:
    WhoopAdapter  — Whoop API v2 (OAuth2, cursor pagination)
    StravaAdapter — Strava API v3 (OAuth2, page-number pagination)
"""

from __future__ import annotations

import httpx

from src.config import Settings
from src.fitness.adapters.strava import StravaAdapter
from src.fitness.adapters.whoop import WhoopAdapter
from src.fitness.base import ProviderAdapter
from src.fitness.config_loader import SyncConfig

__all__ = [
    "StravaAdapter",
    "WhoopAdapter",
    "ADAPTER_REGISTRY",
    "get_adapter",
    "build_adapter",
]

# Registry: source_id → adapter class
ADAPTER_REGISTRY: dict[str, type[ProviderAdapter]] = {
    "whoop": WhoopAdapter,
    "strava": StravaAdapter,
}


def get_adapter(source_id: str) -> type[ProviderAdapter]:
    """Return the adapter class for a given source slug.

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in ADAPTER_REGISTRY:
        raise KeyError(
            f"No adapter registered for source '{source_id}'. "
            f"Available: {list(ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[source_id]


def build_adapter(
    source_id: str,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
    config: SyncConfig | None = None,
) -> ProviderAdapter:
    """Instantiate an adapter with the client credentials from settings."""
    adapter_cls = get_adapter(source_id)
    client_id, client_secret = settings.provider_credentials(source_id)
    return adapter_cls(
        client_id=client_id,
        client_secret=client_secret,
        http_client=http_client,
        config=config,
    )
