"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProviderPayload(BaseModel):
    """Base for validated provider payloads.

    Unknown fields are ignored so upstream additions never break ingestion;
    missing required fields fail validation at the adapter boundary.
    """

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
    )
