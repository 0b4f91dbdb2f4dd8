"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated, Callable

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.fitness.adapters import build_adapter
from src.fitness.base import ProviderAdapter
from src.services.chatbot import ChatService
from src.services.record_store import RecordStore
from src.services.sessions import InvalidSessionError, SessionClaims, read_session
from src.services.token_store import TokenStore

SESSION_COOKIE = "session"

AdapterFactory = Callable[[str], ProviderAdapter]


async def get_current_session(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> SessionClaims:
    """Read the signed session from the cookie, or from a Bearer header."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return read_session(token, settings)
    except InvalidSessionError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def get_token_store() -> TokenStore:
    return TokenStore()


def get_record_store() -> RecordStore:
    return RecordStore()


def get_adapter_factory(
    settings: Annotated[Settings, Depends(get_settings)],
) -> AdapterFactory:
    """Return a callable building a configured adapter for a provider slug."""
    return lambda source: build_adapter(source, settings)


def get_chat_service(
    settings: Annotated[Settings, Depends(get_settings)],
) -> ChatService:
    return ChatService(settings)


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_settings)]
CurrentSession = Annotated[SessionClaims, Depends(get_current_session)]
Tokens = Annotated[TokenStore, Depends(get_token_store)]
Records = Annotated[RecordStore, Depends(get_record_store)]
Adapters = Annotated[AdapterFactory, Depends(get_adapter_factory)]
Chat = Annotated[ChatService, Depends(get_chat_service)]
