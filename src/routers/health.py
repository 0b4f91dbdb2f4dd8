"""Health check endpoint — public, no auth required, read-only."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.dependencies import AppSettings
from src.services.database import fetchval

router = APIRouter(prefix="/api", tags=["system"])
logger = logging.getLogger("livedata.health")

# Settings attribute → name reported in the ``env`` section
_REPORTED_ENV: dict[str, str] = {
    "auth_secret": "AUTH_SECRET",
    "cron_secret": "CRON_SECRET",
    "postgres_url": "POSTGRES_URL",
    "whoop_client_id": "WHOOP_CLIENT_ID",
    "whoop_client_secret": "WHOOP_CLIENT_SECRET",
    "strava_client_id": "STRAVA_CLIENT_ID",
    "strava_client_secret": "STRAVA_CLIENT_SECRET",
}


async def _check_db() -> dict:
    try:
        value = await fetchval("SELECT 1")
    except Exception as exc:
        logger.warning("Health check DB check failed: %s", exc)
        return {"ok": False, "error": str(exc)}
    return {"ok": value == 1}


async def _check_postgis() -> dict:
    # Optional extension; its absence never affects overall health.
    try:
        version = await fetchval("SELECT PostGIS_Version()")
    except Exception as exc:
        logger.debug("PostGIS check failed: %s", exc)
        return {"ok": False, "version": None}
    return {"ok": bool(version), "version": version or None}


@router.get("/health")
async def health_check(settings: AppSettings) -> JSONResponse:
    """Report configured secrets (as booleans) and database reachability.

    Returns 200 when AUTH_SECRET, CRON_SECRET, POSTGRES_URL are set and the
    database answers; 500 otherwise.
    """
    started = time.monotonic()
    env = {name: bool(getattr(settings, attr)) for attr, name in _REPORTED_ENV.items()}

    checks: dict = {"uptimeMs": 0}
    checks["db"] = await _check_db()
    checks["postgis"] = await _check_postgis()
    checks["uptimeMs"] = int((time.monotonic() - started) * 1000)

    ok = bool(
        env["AUTH_SECRET"] and env["CRON_SECRET"] and env["POSTGRES_URL"] and checks["db"]["ok"]
    )
    return JSONResponse(
        status_code=200 if ok else 500,
        content={
            "ok": ok,
            "env": env,
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
