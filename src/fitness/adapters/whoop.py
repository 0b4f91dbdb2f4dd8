"""Whoop API v2 adapter.

Uses OAuth2 (client_secret_post) for authentication.

API base: https://api.prod.whoop.com/developer/v2

Endpoints used:
    /user/profile/basic — Identity (also the cheapest token check)
    /cycle              — Physiological cycles (looked up by id)
    /recovery           — Recovery scores, one per cycle
    /activity/sleep     — Sleep sessions
    /activity/workout   — Workout sessions

List endpoints page with an opaque ``nextToken`` cursor.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from src.fitness.base import FetchError, ProviderAdapter, ProviderIdentity, SyncWindow, as_utc
from src.models.whoop import (
    WhoopCycle,
    WhoopProfile,
    WhoopRecovery,
    WhoopSleep,
    WhoopWorkout,
)

logger = logging.getLogger("livedata.whoop")

# Record kind → (list endpoint, payload model)
_KIND_ENDPOINTS: dict[str, tuple[str, type[BaseModel]]] = {
    "cycles": ("/cycle", WhoopCycle),
    "sleep": ("/activity/sleep", WhoopSleep),
    "recovery": ("/recovery", WhoopRecovery),
    "workouts": ("/activity/workout", WhoopWorkout),
}


def _iso(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WhoopAdapter(ProviderAdapter):
    """Whoop API v2 adapter.

    Whoop organizes data around physiological cycles.  Each recovery
    belongs to exactly one cycle, so the nightly run fetches recoveries and
    resolves their cycles by id instead of listing cycles separately.
    """

    SOURCE_ID = "whoop"
    DISPLAY_NAME = "Whoop"
    RECORD_KINDS = ("cycles", "sleep", "recovery", "workouts")

    API_BASE = "https://api.prod.whoop.com/developer/v2"
    TOKEN_URL = "https://api.prod.whoop.com/oauth/oauth2/token"
    AUTH_URL = "https://api.prod.whoop.com/oauth/oauth2/auth"

    async def get_profile(self, access_token: str) -> ProviderIdentity:
        data = await self._get("/user/profile/basic", None, access_token)
        profile = WhoopProfile.model_validate(data)
        return ProviderIdentity(
            user_id=str(profile.user_id),
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
        )

    async def get_records_since(
        self,
        kind: str,
        since: datetime,
        access_token: str,
        until: datetime | None = None,
    ) -> list[Any]:
        if kind not in _KIND_ENDPOINTS:
            raise ValueError(f"Whoop has no record kind {kind!r}")
        path, model = _KIND_ENDPOINTS[kind]

        params: dict[str, Any] = {
            "limit": self.provider_config.page_size,
            "start": _iso(since),
        }
        if until is not None:
            params["end"] = _iso(until)

        items = await self._paginate(path, params, access_token, kind)
        return self._parse_records(model, items, kind)

    async def get_cycle_by_id(self, cycle_id: int, access_token: str) -> WhoopCycle:
        """Fetch a single cycle.

        Raises:
            FetchError: If Whoop returns a non-2xx response.
            ValidationError: If the payload is not a cycle.
        """
        data = await self._get(f"/cycle/{cycle_id}", None, access_token)
        return WhoopCycle.model_validate(data)

    async def get_cycles_for_recoveries(
        self, recoveries: list[WhoopRecovery], access_token: str
    ) -> list[WhoopCycle]:
        """Resolve the distinct cycles referenced by a recovery batch.

        Lookups run concurrently.  A cycle that cannot be fetched is logged
        and left out; it never fails the batch.
        """
        cycle_ids = list(dict.fromkeys(r.cycle_id for r in recoveries))
        if not cycle_ids:
            return []

        async def _lookup(cycle_id: int) -> WhoopCycle | None:
            try:
                return await self.get_cycle_by_id(cycle_id, access_token)
            except (FetchError, ValidationError) as exc:
                logger.warning("Whoop: cycle %s lookup failed: %s", cycle_id, exc)
                return None

        found = await asyncio.gather(*(_lookup(cid) for cid in cycle_ids))
        return [cycle for cycle in found if cycle is not None]

    async def collect_window(
        self, window: SyncWindow, access_token: str
    ) -> dict[str, list[Any]]:
        recovery, sleep, workouts = await asyncio.gather(
            self.get_records_since("recovery", window.start, access_token),
            self.get_records_since("sleep", window.start, access_token),
            self.get_records_since("workouts", window.start, access_token),
        )
        cycles = await self.get_cycles_for_recoveries(recovery, access_token)

        # Older sleep payloads omit cycle_id; recover it through the recovery link.
        cycle_by_sleep = {r.sleep_id: r.cycle_id for r in recovery if r.sleep_id}
        sleep = [
            s if s.cycle_id is not None or s.id not in cycle_by_sleep
            else s.model_copy(update={"cycle_id": cycle_by_sleep[s.id]})
            for s in sleep
        ]

        logger.info(
            "Whoop: fetched %d recovery, %d sleep, %d workouts, %d cycles since %s",
            len(recovery), len(sleep), len(workouts), len(cycles), window.start.date(),
        )
        return {
            "cycles": cycles,
            "sleep": sleep,
            "recovery": recovery,
            "workouts": workouts,
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _paginate(
        self, path: str, params: dict[str, Any], access_token: str, kind: str
    ) -> list[dict]:
        """Follow ``next_token`` cursors, concatenating ``records`` in page order."""
        items: list[dict] = []
        max_pages = self.provider_config.max_pages
        next_token: str | None = None

        for _ in range(max_pages):
            page_params = dict(params)
            if next_token:
                page_params["nextToken"] = next_token
            data = await self._get(path, page_params, access_token)
            items.extend(data.get("records") or [])
            next_token = data.get("next_token")
            if not next_token:
                return items

        logger.warning(
            "Whoop: %s pagination stopped at the %d-page cap; later records were not fetched",
            kind, max_pages,
        )
        return items
