"""Portfolio chatbot backed by the Anthropic Messages API."""

from __future__ import annotations

import logging
from typing import Sequence

import anthropic

from src.config import Settings, get_settings
from src.models.chat import ChatMessage

logger = logging.getLogger("livedata.chat")


class ChatServiceError(Exception):
    """The language model could not produce a reply."""


class ChatService:
    """Send a conversation to the model and return the assistant's reply."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._settings.require("anthropic_api_key")
            self._client = anthropic.AsyncAnthropic(api_key=self._settings.anthropic_api_key)
        return self._client

    async def reply(self, messages: Sequence[ChatMessage]) -> str:
        """Return the assistant's text for the conversation so far.

        Raises:
            ConfigurationError: If ANTHROPIC_API_KEY is not set.
            ChatServiceError:   If the API call fails or returns no text.
        """
        client = self.client
        try:
            response = await client.messages.create(
                model=self._settings.chat_model,
                max_tokens=self._settings.chat_max_tokens,
                system=self._settings.chat_system_prompt,
                messages=[{"role": m.role, "content": m.content} for m in messages],
            )
        except anthropic.APIError as exc:
            logger.error("Chat completion failed: %s", exc)
            raise ChatServiceError(str(exc)) from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()
        if not text:
            raise ChatServiceError("Model returned no text")
        return text
