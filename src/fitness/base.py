"""Base classes and shared types for the fitness provider adapters.

Every provider adapter subclasses ProviderAdapter and speaks to exactly one
third-party API.  Adapters own the wire details (token endpoint form fields,
pagination style, payload shapes); token policy and storage live in
``src.fitness.sync``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Iterable, TypeVar
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError

from src.fitness.config_loader import ProviderConfig, SyncConfig, get_sync_config

logger = logging.getLogger("livedata.fitness")

RecordT = TypeVar("RecordT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """A non-2xx response from a provider endpoint.

    Attributes:
        status_code: HTTP status returned by the provider.
        message:     Provider's error description, or the HTTP reason phrase.
        error_code:  Provider's machine-readable error code (e.g. ``invalid_grant``).
    """

    def __init__(
        self, status_code: int, message: str, error_code: str | None = None
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.error_code = error_code
        detail = f"{error_code}: {message}" if error_code else message
        super().__init__(f"HTTP {status_code} - {detail}")


class RefreshError(ProviderError):
    """Token endpoint rejected a refresh or authorization-code exchange."""


class FetchError(ProviderError):
    """Data endpoint returned a non-2xx response."""


# ---------------------------------------------------------------------------
# Tokens / identity
# ---------------------------------------------------------------------------


@dataclass
class TokenGrant:
    """Raw token endpoint response, before any expiry policy is applied.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: New refresh token, or None when the provider did not rotate it.
        expires_in:    Lifetime of the access token in seconds.
        token_type:    Token type, typically "Bearer".
        scope:         Granted scopes as reported by the provider.
    """

    access_token: str
    refresh_token: str | None
    expires_in: int
    token_type: str = "Bearer"
    scope: str | None = None


@dataclass
class TokenPair:
    """Access/refresh pair as stored for one account.

    ``expires_at`` already includes the safety margin, so comparing it with
    "now" is enough to decide whether a refresh is due.
    """

    access_token: str
    refresh_token: str | None
    expires_at: datetime


@dataclass
class ProviderIdentity:
    """Identity returned by a provider's profile endpoint."""

    user_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.user_id


# ---------------------------------------------------------------------------
# Time window
# ---------------------------------------------------------------------------


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class SyncWindow:
    """Closed time range ``[start, end]`` a sync run is allowed to store."""

    start: datetime
    end: datetime

    @classmethod
    def trailing(
        cls, now: datetime, days: int = 2, tz: tzinfo = timezone.utc
    ) -> "SyncWindow":
        """Fully elapsed days only: start of ``today - days`` to end of yesterday."""
        today: date = as_utc(now).astimezone(tz).date()
        start = datetime.combine(today - timedelta(days=days), time.min, tzinfo=tz)
        end = datetime.combine(today - timedelta(days=1), time.max, tzinfo=tz)
        return cls(start=start, end=end)

    @classmethod
    def recent(
        cls, now: datetime, days: int, tz: tzinfo = timezone.utc
    ) -> "SyncWindow":
        """Start of ``today - days`` up to ``now``, today's partial data included."""
        today: date = as_utc(now).astimezone(tz).date()
        start = datetime.combine(today - timedelta(days=days), time.min, tzinfo=tz)
        return cls(start=start, end=as_utc(now))

    def contains(self, moment: datetime | None) -> bool:
        if moment is None:
            return False
        return self.start <= as_utc(moment) <= self.end


# ---------------------------------------------------------------------------
# Abstract base adapter
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Abstract base class for the fitness provider adapters.

    Subclasses must implement:
        - get_profile()
        - get_records_since()
        - collect_window()

    Token endpoint handling (authorization code + refresh) is shared, since
    both providers accept the same form-encoded client_secret_post exchange.
    """

    #: Provider slug, also the ``provider`` column in oauth_accounts.
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Provider"

    #: Record kinds this provider syncs, in storage order.
    RECORD_KINDS: tuple[str, ...] = ()

    API_BASE: str = ""
    TOKEN_URL: str = ""
    AUTH_URL: str = ""

    #: Separator used when joining scopes for the authorize URL.
    SCOPE_SEPARATOR: str = " "

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        http_client: httpx.AsyncClient | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            client_id:     OAuth2 client ID.
            client_secret: OAuth2 client secret.
            http_client:   Optional pre-configured httpx client (for testing).
            config:        Tunables; the bundled sync_config.yaml by default.
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._http_client = http_client
        self._config = config or get_sync_config()

    @property
    def provider_config(self) -> ProviderConfig:
        return self._config.provider(self.SOURCE_ID)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        """Build the provider's authorization-code URL."""
        params = {
            "client_id": self._client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": self.SCOPE_SEPARATOR.join(self.provider_config.scopes),
            "state": state,
            **self._extra_authorize_params(),
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for tokens.

        Raises:
            RefreshError: If the token endpoint returns a non-2xx response.
        """
        logger.info("%s: exchanging authorization code", self.DISPLAY_NAME)
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new grant.

        Raises:
            RefreshError: If the token endpoint returns a non-2xx response.
        """
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        if self.provider_config.send_scope_on_refresh:
            form["scope"] = self.SCOPE_SEPARATOR.join(self.provider_config.scopes)
        return await self._token_request(form)

    def _extra_authorize_params(self) -> dict[str, str]:
        return {}

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_profile(self, access_token: str) -> ProviderIdentity:
        """Fetch the authenticated user's identity.

        Also serves as the cheapest "is this token valid" check.
        """

    @abstractmethod
    async def get_records_since(
        self,
        kind: str,
        since: datetime,
        access_token: str,
        until: datetime | None = None,
    ) -> list[Any]:
        """Page through one record kind from ``since`` to ``until`` (or now).

        Pages are concatenated in the order the provider returns them.
        """

    @abstractmethod
    async def collect_window(
        self, window: SyncWindow, access_token: str
    ) -> dict[str, list[Any]]:
        """Fetch every record kind needed to cover ``window``.

        Returns:
            Mapping of record kind → validated records, unfiltered.
        """

    # ------------------------------------------------------------------
    # Shared HTTP helpers
    # ------------------------------------------------------------------

    async def _token_request(self, form: dict[str, str]) -> TokenGrant:
        data = await self._send(
            "POST",
            self.TOKEN_URL,
            data={
                **form,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
            headers={"Accept": "application/json"},
            error_cls=RefreshError,
        )
        if not data.get("access_token"):
            raise RefreshError(200, "token response has no access_token")
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in") or 3600),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope"),
        )

    async def _get(
        self, path: str, params: dict | None, access_token: str
    ) -> Any:
        """Authenticated GET against the provider API, returning parsed JSON."""
        return await self._send(
            "GET",
            f"{self.API_BASE}{path}",
            params=params,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            error_cls=FetchError,
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[ProviderError],
        **kwargs: Any,
    ) -> Any:
        if self._http_client:
            response = await self._http_client.request(method, url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.request(method, url, **kwargs)

        if not response.is_success:
            raise _error_from_response(response, error_cls)
        try:
            return response.json()
        except ValueError as exc:
            # Gateways sometimes answer 200 with an HTML page.
            raise error_cls(response.status_code, "response body is not JSON") from exc

    def _parse_records(
        self, model: type[RecordT], items: Iterable[Any], kind: str
    ) -> list[RecordT]:
        """Validate raw payload items, logging and dropping malformed ones."""
        records: list[RecordT] = []
        for item in items:
            try:
                records.append(model.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "%s: dropping malformed %s record: %s",
                    self.DISPLAY_NAME,
                    kind,
                    exc.errors(include_url=False)[:3],
                )
        return records


def _error_from_response(
    response: httpx.Response, error_cls: type[ProviderError]
) -> ProviderError:
    """Build a typed error from a failed response, using its JSON body when present."""
    message = response.reason_phrase or "Unknown error"
    code: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("error") if isinstance(body.get("error"), str) else None
        message = (
            body.get("error_description")
            or body.get("message")
            or code
            or message
        )
    return error_cls(response.status_code, str(message), code)
