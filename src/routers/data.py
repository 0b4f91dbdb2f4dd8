"""Signed-in data endpoints: on-demand collection and stored-data summaries.

- ``POST /api/data/collect``  ``{"mode": "daily" | "historical", "days": N}``
- ``POST /api/data/backfill`` historical collection, ``?days=`` optional
- ``GET  /api/data/stats``    counts, date range and newest rows per kind

Every route acts on the provider account named in the session.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from src.config import Settings
from src.dependencies import Adapters, AppSettings, CurrentSession, Records, Tokens
from src.fitness.base import ProviderError
from src.fitness.sync.backfill import CollectionMode, CollectionService, ReauthenticationRequired
from src.fitness.sync.orchestrator import SyncOrchestrator
from src.fitness.sync.tokens import TokenRefreshService
from src.models.collect import CollectRequest
from src.services.sessions import SessionClaims

router = APIRouter(prefix="/api/data", tags=["data"])
logger = logging.getLogger("livedata.data")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _collect(
    claims: SessionClaims,
    mode: CollectionMode,
    days: int | None,
    settings: Settings,
    tokens: Tokens,
    records: Records,
    adapters: Adapters,
) -> JSONResponse | dict:
    provider = claims.provider
    settings.require(f"{provider}_client_id", f"{provider}_client_secret")
    adapter = adapters(provider)
    token_service = TokenRefreshService(adapter, tokens)
    service = CollectionService(
        orchestrator=SyncOrchestrator(
            adapter=adapter,
            token_service=token_service,
            token_store=tokens,
            record_store=records,
        ),
        token_service=token_service,
        token_store=tokens,
    )

    try:
        outcome = await service.collect(claims.user_id, mode=mode, days=days)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ReauthenticationRequired as exc:
        logger.warning("%s collection for %s needs a new sign-in: %s", provider, claims.user_id, exc)
        return JSONResponse(
            status_code=401,
            content={
                "error": "Authentication expired",
                "message": f"Your {provider} connection has expired. Please sign in again.",
                "requiresReauth": True,
            },
        )
    except (ProviderError, httpx.HTTPError) as exc:
        logger.error("%s collection for %s failed: %s", provider, claims.user_id, exc)
        return JSONResponse(
            status_code=502,
            content={"success": False, "error": "Collection failed", "details": str(exc)},
        )

    payload = {**outcome.to_json(), "timestamp": _now_iso()}
    if not outcome.result.success:
        return JSONResponse(status_code=502, content={**payload, "error": "Collection failed"})
    return payload


@router.post("/collect")
async def collect(
    claims: CurrentSession,
    settings: AppSettings,
    tokens: Tokens,
    records: Records,
    adapters: Adapters,
    body: CollectRequest | None = None,
):
    """Fetch and store the session account's data; ``daily`` when no body is sent."""
    request = body or CollectRequest()
    return await _collect(
        claims, request.mode, request.days, settings, tokens, records, adapters
    )


@router.post("/backfill")
async def backfill(
    claims: CurrentSession,
    settings: AppSettings,
    tokens: Tokens,
    records: Records,
    adapters: Adapters,
    days: int | None = Query(None, ge=1),
):
    """Historical collection, by default the configured number of days."""
    return await _collect(claims, "historical", days, settings, tokens, records, adapters)


@router.get("/stats")
async def stats(
    claims: CurrentSession,
    records: Records,
    limit: int = Query(10, ge=1, le=100),
):
    """Summarize what is stored for the session account."""
    try:
        summaries = await records.summary(claims.provider, claims.user_id, recent_limit=limit)
    except Exception as exc:
        logger.error("Reading stored %s data failed: %s", claims.provider, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to read stored data", "details": str(exc)},
        )

    rendered = {kind: s.to_json() for kind, s in summaries.items()}
    latest = [s.latest for s in summaries.values() if s.latest is not None]
    return {
        "success": True,
        "provider": claims.provider,
        "userId": claims.user_id,
        "counts": {kind: r["total"] for kind, r in rendered.items()},
        "dateRange": {
            kind: {"earliest": r["earliest"], "latest": r["latest"]}
            for kind, r in rendered.items()
        },
        "recent": {kind: r["recent"] for kind, r in rendered.items()},
        "latestDate": max(latest).isoformat() if latest else None,
        "timestamp": _now_iso(),
    }
