"""Portfolio chatbot endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.config import ConfigurationError
from src.dependencies import Chat
from src.models.chat import ChatReply, ChatRequest
from src.services.chatbot import ChatServiceError

router = APIRouter(prefix="/api", tags=["chat"])
logger = logging.getLogger("livedata.chat")

_FAILURE = {"error": "Failed to get response from AI."}


@router.post("/chat", response_model=ChatReply)
async def chat(body: ChatRequest, service: Chat):
    try:
        content = await service.reply(body.messages)
    except (ChatServiceError, ConfigurationError) as exc:
        logger.error("Chat API error: %s", exc)
        return JSONResponse(status_code=500, content=_FAILURE)
    return ChatReply(content=content)
