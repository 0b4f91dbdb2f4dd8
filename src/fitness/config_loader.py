"""Load, validate, and hot-reload the sync tunables.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit — no restart required.

Usage::

    from src.fitness.config_loader import get_sync_config

    config = get_sync_config()
    config.tokens.refresh_lookahead_seconds   # 600
    config.provider("whoop").max_pages        # 10
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger("livedata.fitness.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class TokenConfig:
    """Token refresh policy."""

    expiry_buffer_seconds: int = 300
    refresh_lookahead_seconds: int = 600
    refresh_all_delay_ms: int = 100


@dataclass
class WindowConfig:
    """Scheduled run settings."""

    window_days: int = 2
    timezone: str = "UTC"
    user_delay_ms: int = 1000
    backfill_days: int = 30
    max_backfill_days: int = 90

    @property
    def tzinfo(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone)


@dataclass
class ProviderConfig:
    """Per-provider paging and scope settings."""

    page_size: int = 25
    max_pages: int = 10
    page_delay_ms: int = 0
    send_scope_on_refresh: bool = False
    scopes: list[str] = field(default_factory=list)


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:   Config schema version string.
        tokens:    Token refresh policy.
        sync:      Trailing window and inter-user pacing.
        providers: Provider slug → paging/scope settings.
    """

    version: str
    tokens: TokenConfig
    sync: WindowConfig
    providers: dict[str, ProviderConfig]
    _raw: dict = field(default_factory=dict, repr=False)

    def provider(self, source: str) -> ProviderConfig:
        """Return the settings for a provider, or defaults if it is not configured."""
        return self.providers.get(source) or ProviderConfig()


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Applies defaults for optional fields and collects every problem before
    raising, so one edit can fix them all.

    Raises:
        ConfigValidationError: If any value is missing, mistyped, or out of range.
    """
    errors: list[str] = []

    def _non_negative_int(section: dict, key: str, path: str, default: int) -> int:
        value = section.get(key, default)
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be an integer, got {value!r}")
            return default
        if number < 0:
            errors.append(f"{path}.{key} = {number} must not be negative")
        return number

    version = str(raw.get("version", "1.0"))

    # ── Tokens ──
    tok_raw = raw.get("tokens") or {}
    tokens = TokenConfig(
        expiry_buffer_seconds=_non_negative_int(tok_raw, "expiry_buffer_seconds", "tokens", 300),
        refresh_lookahead_seconds=_non_negative_int(
            tok_raw, "refresh_lookahead_seconds", "tokens", 600
        ),
        refresh_all_delay_ms=_non_negative_int(tok_raw, "refresh_all_delay_ms", "tokens", 100),
    )

    # ── Window ──
    sync_raw = raw.get("sync") or {}
    window = WindowConfig(
        window_days=_non_negative_int(sync_raw, "window_days", "sync", 2),
        timezone=str(sync_raw.get("timezone", "UTC")),
        user_delay_ms=_non_negative_int(sync_raw, "user_delay_ms", "sync", 1000),
        backfill_days=_non_negative_int(sync_raw, "backfill_days", "sync", 30),
        max_backfill_days=_non_negative_int(sync_raw, "max_backfill_days", "sync", 90),
    )
    if window.window_days < 1:
        errors.append("sync.window_days must be at least 1")
    if not 1 <= window.backfill_days <= window.max_backfill_days:
        errors.append(
            f"sync.backfill_days = {window.backfill_days} must be between 1 and "
            f"sync.max_backfill_days ({window.max_backfill_days})"
        )
    try:
        window.tzinfo
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"sync.timezone {window.timezone!r} is not a known IANA zone")

    # ── Providers ──
    providers: dict[str, ProviderConfig] = {}
    for source, cfg in (raw.get("providers") or {}).items():
        if not isinstance(cfg, dict):
            errors.append(f"providers.{source} must be a mapping")
            continue
        path = f"providers.{source}"
        scopes = cfg.get("scopes", [])
        if not isinstance(scopes, list):
            errors.append(f"{path}.scopes must be a list")
            scopes = []
        provider = ProviderConfig(
            page_size=_non_negative_int(cfg, "page_size", path, 25),
            max_pages=_non_negative_int(cfg, "max_pages", path, 10),
            page_delay_ms=_non_negative_int(cfg, "page_delay_ms", path, 0),
            send_scope_on_refresh=bool(cfg.get("send_scope_on_refresh", False)),
            scopes=[str(s) for s in scopes],
        )
        if provider.page_size < 1:
            errors.append(f"{path}.page_size must be at least 1")
        if provider.max_pages < 1:
            errors.append(f"{path}.max_pages must be at least 1")
        providers[source] = provider

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        tokens=tokens,
        sync=window,
        providers=providers,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


def build_sync_config(raw: dict[str, Any]) -> SyncConfig:
    """Validate an in-memory mapping (tests, admin tooling)."""
    return _validate_and_build(raw)


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
