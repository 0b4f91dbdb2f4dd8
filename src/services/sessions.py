"""Signed session and OAuth state tokens.

Both are HS256 JWTs signed with AUTH_SECRET.  The session token identifies
which provider account the browser signed in with; it never carries provider
tokens, which stay in the database.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt as pyjwt

from src.config import Settings, get_settings

logger = logging.getLogger("livedata.auth")

_ALGORITHM = "HS256"
_SESSION_TYPE = "session"
_STATE_TYPE = "oauth_state"
_STATE_TTL = timedelta(minutes=10)


class InvalidSessionError(Exception):
    """A session or state token is missing, expired, forged, or of the wrong type."""


@dataclass(frozen=True)
class SessionClaims:
    provider: str
    user_id: str
    name: str | None
    expires_at: datetime


def _secret(settings: Settings) -> str:
    settings.require("auth_secret")
    return settings.auth_secret


def _decode(token: str, settings: Settings, expected_type: str) -> dict:
    try:
        payload = pyjwt.decode(token, _secret(settings), algorithms=[_ALGORITHM])
    except pyjwt.ExpiredSignatureError as exc:
        raise InvalidSessionError("Token expired") from exc
    except pyjwt.InvalidTokenError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise InvalidSessionError("Invalid token") from exc
    if payload.get("typ") != expected_type:
        raise InvalidSessionError("Wrong token type")
    return payload


def issue_session(
    provider: str,
    user_id: str,
    name: str | None = None,
    settings: Settings | None = None,
) -> tuple[str, datetime]:
    """Return ``(token, expires_at)`` for a signed-in account."""
    s = settings or get_settings()
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=s.session_ttl_seconds)
    token = pyjwt.encode(
        {
            "typ": _SESSION_TYPE,
            "sub": user_id,
            "provider": provider,
            "name": name,
            "iat": now,
            "exp": expires_at,
        },
        _secret(s),
        algorithm=_ALGORITHM,
    )
    return token, expires_at


def read_session(token: str, settings: Settings | None = None) -> SessionClaims:
    """Verify a session token.

    Raises:
        InvalidSessionError: If the token does not verify.
    """
    payload = _decode(token, settings or get_settings(), _SESSION_TYPE)
    return SessionClaims(
        provider=payload["provider"],
        user_id=payload["sub"],
        name=payload.get("name"),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def issue_state(provider: str, settings: Settings | None = None) -> str:
    """Short-lived OAuth ``state`` bound to one provider."""
    s = settings or get_settings()
    now = datetime.now(timezone.utc)
    return pyjwt.encode(
        {
            "typ": _STATE_TYPE,
            "provider": provider,
            "nonce": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + _STATE_TTL,
        },
        _secret(s),
        algorithm=_ALGORITHM,
    )


def verify_state(state: str, provider: str, settings: Settings | None = None) -> None:
    """Raise InvalidSessionError unless ``state`` was issued for ``provider``."""
    payload = _decode(state, settings or get_settings(), _STATE_TYPE)
    if payload.get("provider") != provider:
        raise InvalidSessionError("State was issued for a different provider")
