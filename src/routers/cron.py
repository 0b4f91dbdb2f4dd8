"""Scheduled sync endpoints, called by an external cron with a shared secret.

Both GET and POST are accepted since schedulers differ in what they send.
``?dryRun=true`` verifies the wiring (secret, routing) without touching the
database or the provider.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from src.config import Settings
from src.dependencies import Adapters, AppSettings, Records, Tokens
from src.fitness.sync.orchestrator import NoAccountsError, SyncOrchestrator
from src.fitness.sync.tokens import TokenRefreshService

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = logging.getLogger("livedata.cron")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _failure(error: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": error, "timestamp": _now_iso()},
    )


def verify_cron_secret(request: Request, settings: Settings) -> None:
    """Accept the secret from ``x-cron-secret`` or the ``secret``/``token`` query params.

    Raises:
        ConfigurationError: If CRON_SECRET is not configured.
        HTTPException:      401 if the presented secret is missing or wrong.
    """
    settings.require("cron_secret")
    presented = (
        request.headers.get("x-cron-secret")
        or request.query_params.get("secret")
        or request.query_params.get("token")
    )
    if not presented or not hmac.compare_digest(
        presented.encode(), settings.cron_secret.encode()
    ):
        logger.warning("Rejected cron call to %s: bad or missing secret", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _run_sync(
    provider: str,
    endpoint: str,
    request: Request,
    dry_run: bool,
    settings: Settings,
    tokens: Tokens,
    records: Records,
    adapters: Adapters,
) -> JSONResponse | dict:
    verify_cron_secret(request, settings)

    if dry_run:
        logger.info("Dry run of %s", endpoint)
        return {"ok": True, "endpoint": endpoint, "dryRun": True, "timestamp": _now_iso()}

    settings.require(f"{provider}_client_id", f"{provider}_client_secret")
    adapter = adapters(provider)
    orchestrator = SyncOrchestrator(
        adapter=adapter,
        token_service=TokenRefreshService(adapter, tokens),
        token_store=tokens,
        record_store=records,
    )
    try:
        summary = await orchestrator.run()
    except NoAccountsError as exc:
        logger.error("%s aborted: %s", endpoint, exc)
        return _failure(str(exc))
    except Exception as exc:
        logger.error("%s failed: %s", endpoint, exc, exc_info=True)
        return _failure(str(exc) or type(exc).__name__)

    return {"success": True, "data": summary.to_json(), "timestamp": _now_iso()}


@router.api_route("/daily-data-fetch", methods=["GET", "POST"])
async def daily_data_fetch(
    request: Request,
    settings: AppSettings,
    tokens: Tokens,
    records: Records,
    adapters: Adapters,
    dry_run: bool = Query(False, alias="dryRun"),
):
    """Refresh Whoop tokens and store the trailing window of recovery data."""
    return await _run_sync(
        "whoop", "daily-data-fetch", request, dry_run, settings, tokens, records, adapters
    )


@router.api_route("/strava-sync", methods=["GET", "POST"])
async def strava_sync(
    request: Request,
    settings: AppSettings,
    tokens: Tokens,
    records: Records,
    adapters: Adapters,
    dry_run: bool = Query(False, alias="dryRun"),
):
    """Refresh Strava tokens and store the trailing window of activities."""
    return await _run_sync(
        "strava", "strava-sync", request, dry_run, settings, tokens, records, adapters
    )
