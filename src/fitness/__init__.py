"""Live Data fitness provider sync.

This package keeps OAuth tokens for the fitness providers fresh and pulls
their records into Postgres on a schedule.

Subpackages:
    adapters/ — Provider API adapters (Whoop, Strava)
    sync/     — Token refresh service, sync orchestrator, deduplication

Core modules:
    base          — ProviderAdapter ABC, token types, sync window
    config_loader — Load/validate/hot-reload sync_config.yaml
"""

from src.fitness.base import (
    FetchError,
    ProviderAdapter,
    ProviderError,
    ProviderIdentity,
    RefreshError,
    SyncWindow,
    TokenGrant,
    TokenPair,
)
from src.fitness.config_loader import SyncConfig, get_sync_config

__all__ = [
    "ProviderAdapter",
    "ProviderError",
    "RefreshError",
    "FetchError",
    "ProviderIdentity",
    "SyncWindow",
    "TokenGrant",
    "TokenPair",
    "SyncConfig",
    "get_sync_config",
]
