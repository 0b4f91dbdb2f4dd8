"""Pydantic request model for on-demand collection."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CollectRequest(BaseModel):
    mode: Literal["daily", "historical"] = "daily"
    # Only used by historical mode; the configured default applies when omitted.
    days: int | None = Field(default=None, ge=1)
