"""Pydantic models for Strava API v3 payloads."""

from __future__ import annotations

from datetime import datetime, timedelta

from src.models.base import ProviderPayload


class StravaAthlete(ProviderPayload):
    id: int
    username: str | None = None
    firstname: str | None = None
    lastname: str | None = None
    city: str | None = None
    country: str | None = None


class StravaMap(ProviderPayload):
    id: str | None = None
    summary_polyline: str | None = None


class StravaActivity(ProviderPayload):
    id: int
    name: str | None = None
    type: str | None = None
    sport_type: str | None = None
    start_date: datetime
    start_date_local: datetime | None = None
    timezone: str | None = None
    distance: float | None = None
    moving_time: int | None = None
    elapsed_time: int = 0
    total_elevation_gain: float | None = None
    average_speed: float | None = None
    max_speed: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    start_latlng: list[float] | None = None
    end_latlng: list[float] | None = None
    map: StravaMap | None = None

    @property
    def external_id(self) -> str:
        return str(self.id)

    @property
    def window_timestamp(self) -> datetime:
        # Strava has no end timestamp; elapsed_time covers pauses too.
        return self.start_date + timedelta(seconds=self.elapsed_time)
