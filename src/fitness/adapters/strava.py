"""Strava API v3 adapter.

API base: https://www.strava.com/api/v3

Endpoints used:
    /athlete             — Identity
    /athlete/activities  — Activity summaries (page/per_page, after/before epoch seconds)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from src.fitness.base import ProviderAdapter, ProviderIdentity, SyncWindow, as_utc
from src.models.strava import StravaActivity, StravaAthlete

logger = logging.getLogger("livedata.strava")

# Strava rejects per_page above this
_MAX_PER_PAGE = 200


class StravaAdapter(ProviderAdapter):
    """Strava API v3 adapter.

    Activities are the only record kind.  Strava rotates refresh tokens on
    every refresh, so the token response's refresh_token always wins.
    """

    SOURCE_ID = "strava"
    DISPLAY_NAME = "Strava"
    RECORD_KINDS = ("activities",)

    API_BASE = "https://www.strava.com/api/v3"
    TOKEN_URL = "https://www.strava.com/oauth/token"
    AUTH_URL = "https://www.strava.com/oauth/authorize"
    SCOPE_SEPARATOR = ","

    def _extra_authorize_params(self) -> dict[str, str]:
        return {"approval_prompt": "force"}

    async def get_profile(self, access_token: str) -> ProviderIdentity:
        data = await self._get("/athlete", None, access_token)
        athlete = StravaAthlete.model_validate(data)
        return ProviderIdentity(
            user_id=str(athlete.id),
            first_name=athlete.firstname,
            last_name=athlete.lastname,
        )

    async def get_records_since(
        self,
        kind: str,
        since: datetime,
        access_token: str,
        until: datetime | None = None,
    ) -> list[Any]:
        if kind != "activities":
            raise ValueError(f"Strava has no record kind {kind!r}")

        cfg = self.provider_config
        per_page = min(cfg.page_size, _MAX_PER_PAGE)
        params: dict[str, Any] = {
            "after": int(as_utc(since).timestamp()),
            "per_page": per_page,
        }
        if until is not None:
            params["before"] = int(as_utc(until).timestamp())

        items: list[dict] = []
        for page in range(1, cfg.max_pages + 1):
            batch = await self._get(
                "/athlete/activities", {**params, "page": page}, access_token
            )
            batch = batch or []
            items.extend(batch)
            if len(batch) < per_page:
                break
            if page == cfg.max_pages:
                logger.warning(
                    "Strava: activity pagination stopped at the %d-page cap", cfg.max_pages
                )
                break
            if cfg.page_delay_ms:
                await asyncio.sleep(cfg.page_delay_ms / 1000.0)

        return self._parse_records(StravaActivity, items, kind)

    async def collect_window(
        self, window: SyncWindow, access_token: str
    ) -> dict[str, list[Any]]:
        activities = await self.get_records_since(
            "activities", window.start, access_token, until=window.end
        )
        logger.info(
            "Strava: fetched %d activities between %s and %s",
            len(activities), window.start.date(), window.end.date(),
        )
        return {"activities": activities}
