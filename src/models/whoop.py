"""Pydantic models for Whoop API v2 payloads: profile, cycles, sleep, recovery, workouts."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, Field

from src.models.base import ProviderPayload


# ---------- Profile ----------

class WhoopProfile(ProviderPayload):
    user_id: int
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


# ---------- Cycles ----------

class WhoopCycleScore(ProviderPayload):
    strain: float | None = None
    kilojoule: float | None = None
    average_heart_rate: int | None = None
    max_heart_rate: int | None = None


class WhoopCycle(ProviderPayload):
    id: int
    user_id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    start: datetime
    end: datetime | None = None  # null while the cycle is still open
    timezone_offset: str | None = None
    score_state: str | None = None
    score: WhoopCycleScore | None = None

    @property
    def external_id(self) -> str:
        return str(self.id)

    @property
    def window_timestamp(self) -> datetime | None:
        return self.end


# ---------- Sleep ----------

class WhoopSleepStageSummary(ProviderPayload):
    total_in_bed_time_milli: int | None = None
    total_awake_time_milli: int | None = None
    total_no_data_time_milli: int | None = None
    total_light_sleep_time_milli: int | None = None
    total_slow_wave_sleep_time_milli: int | None = None
    total_rem_sleep_time_milli: int | None = None
    sleep_cycle_count: int | None = None
    disturbance_count: int | None = None


class WhoopSleepScore(ProviderPayload):
    stage_summary: WhoopSleepStageSummary | None = None
    respiratory_rate: float | None = None
    sleep_performance_percentage: float | None = None
    sleep_consistency_percentage: float | None = None
    sleep_efficiency_percentage: float | None = None


class WhoopSleep(ProviderPayload):
    id: str
    v1_id: int | None = None
    cycle_id: int | None = None
    user_id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    start: datetime
    end: datetime | None = None
    timezone_offset: str | None = None
    nap: bool = False
    score_state: str | None = None
    score: WhoopSleepScore | None = None

    @property
    def external_id(self) -> str:
        return self.id

    @property
    def window_timestamp(self) -> datetime | None:
        return self.end

    @property
    def is_scored(self) -> bool:
        return self.score is not None and self.score_state == "SCORED"


# ---------- Recovery ----------

class WhoopRecoveryScore(ProviderPayload):
    user_calibrating: bool | None = None
    recovery_score: float | None = None
    resting_heart_rate: float | None = None
    hrv_rmssd_milli: float | None = None
    spo2_percentage: float | None = None
    skin_temp_celsius: float | None = None


class WhoopRecovery(ProviderPayload):
    cycle_id: int
    sleep_id: str | None = None
    user_id: int
    created_at: datetime
    updated_at: datetime | None = None
    score_state: str | None = None
    score: WhoopRecoveryScore | None = None

    @property
    def external_id(self) -> str:
        return str(self.cycle_id)

    @property
    def window_timestamp(self) -> datetime | None:
        return self.created_at


# ---------- Workouts ----------

class WhoopZoneDurations(ProviderPayload):
    zone_zero_milli: int | None = None
    zone_one_milli: int | None = None
    zone_two_milli: int | None = None
    zone_three_milli: int | None = None
    zone_four_milli: int | None = None
    zone_five_milli: int | None = None


class WhoopWorkoutScore(ProviderPayload):
    strain: float | None = None
    average_heart_rate: int | None = None
    max_heart_rate: int | None = None
    kilojoule: float | None = None
    percent_recorded: float | None = None
    distance_meter: float | None = None
    altitude_gain_meter: float | None = None
    altitude_change_meter: float | None = None
    zone_durations: WhoopZoneDurations | None = Field(
        default=None,
        validation_alias=AliasChoices("zone_durations", "zone_duration"),
    )


class WhoopWorkout(ProviderPayload):
    id: str
    v1_id: int | None = None
    user_id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    start: datetime
    end: datetime | None = None
    timezone_offset: str | None = None
    sport_id: int | None = None
    sport_name: str | None = None
    score_state: str | None = None
    score: WhoopWorkoutScore | None = None

    @property
    def external_id(self) -> str:
        return self.id

    @property
    def window_timestamp(self) -> datetime | None:
        return self.end
