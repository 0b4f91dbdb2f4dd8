"""OAuth sign-in with a fitness provider, and the resulting browser session.

Flow:
1. ``GET /api/auth/{provider}/authorize`` returns the provider URL and a signed state
2. The provider redirects back to ``/api/auth/{provider}/callback?code&state``
3. The callback exchanges the code, stores identity + tokens, sets the session cookie
4. ``GET /api/auth/session`` reports the signed-in user, refreshing tokens if due
"""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, HTTPException, Query, Response

from src.dependencies import SESSION_COOKIE, Adapters, AppSettings, CurrentSession, Tokens
from src.fitness.adapters import ADAPTER_REGISTRY
from src.fitness.base import ProviderError
from src.fitness.sync.tokens import TokenRefreshService
from src.services.sessions import InvalidSessionError, issue_session, issue_state, verify_state

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger("livedata.auth")

REFRESH_ERROR = "RefreshAccessTokenError"


def _check_provider(provider: str) -> None:
    if provider not in ADAPTER_REGISTRY:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider}'")


def _redirect_uri(base_url: str, provider: str) -> str:
    return f"{base_url.rstrip('/')}/api/auth/{provider}/callback"


@router.get("/session")
async def session(claims: CurrentSession, tokens: Tokens, adapters: Adapters) -> dict:
    """Report the signed-in account and whether its provider tokens are usable."""
    service = TokenRefreshService(adapters(claims.provider), tokens)
    error: str | None = None
    expires_at: str | None = None
    try:
        pair = await service.get_fresh_tokens(claims.user_id)
    except (ProviderError, httpx.HTTPError) as exc:
        logger.warning("Session refresh failed for %s/%s: %s", claims.provider, claims.user_id, exc)
        pair = None
    if pair is None:
        error = REFRESH_ERROR
    else:
        expires_at = pair.expires_at.isoformat()

    return {
        "user": {"id": claims.user_id, "name": claims.name},
        "provider": claims.provider,
        "expiresAt": expires_at,
        "error": error,
    }


@router.post("/signout")
async def signout(response: Response) -> dict:
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"ok": True}


@router.get("/{provider}/authorize")
async def authorize(provider: str, settings: AppSettings, adapters: Adapters) -> dict:
    _check_provider(provider)
    settings.require("auth_secret", f"{provider}_client_id")
    state = issue_state(provider, settings)
    url = adapters(provider).authorization_url(
        _redirect_uri(settings.public_base_url, provider), state
    )
    return {"authUrl": url, "state": state}


@router.get("/{provider}/callback")
async def callback(
    provider: str,
    response: Response,
    settings: AppSettings,
    tokens: Tokens,
    adapters: Adapters,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
) -> dict:
    _check_provider(provider)
    if error:
        raise HTTPException(status_code=400, detail=f"Authorization denied: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")
    try:
        verify_state(state, provider, settings)
    except InvalidSessionError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid state: {exc}") from exc

    service = TokenRefreshService(adapters(provider), tokens)
    try:
        identity, _ = await service.complete_authorization(
            code, _redirect_uri(settings.public_base_url, provider)
        )
    except (ProviderError, httpx.HTTPError) as exc:
        logger.error("%s sign-in failed: %s", provider, exc)
        raise HTTPException(status_code=502, detail=f"Sign-in with {provider} failed") from exc

    token, expires_at = issue_session(provider, identity.user_id, identity.display_name, settings)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    return {
        "authenticated": True,
        "user": {
            "id": identity.user_id,
            "name": identity.display_name,
            "email": identity.email,
        },
        "provider": provider,
        "expiresAt": expires_at.isoformat(),
    }
