"""Idempotent upserts of validated provider records.

Each ``(source, kind)`` pair maps to one table with a provider-assigned
primary key.  Re-running a sync over the same window rewrites the same rows;
``UpsertResult.inserted`` only counts rows that did not exist before.
``summary()`` is the read side: counts, date range and newest rows per kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence

import asyncpg

from src.fitness.sync.dedup import build_upsert_query
from src.models.strava import StravaActivity
from src.models.whoop import WhoopCycle, WhoopRecovery, WhoopSleep, WhoopWorkout
from src.services.database import get_pool

logger = logging.getLogger("livedata.records")


@dataclass
class UpsertResult:
    """Outcome of upserting one batch of records."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class KindSummary:
    """Stored rows of one record kind for one account."""

    total: int = 0
    earliest: datetime | None = None
    latest: datetime | None = None
    recent: list[dict[str, Any]] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "total": self.total,
            "earliest": self.earliest.isoformat() if self.earliest else None,
            "latest": self.latest.isoformat() if self.latest else None,
            "recent": self.recent,
        }


@dataclass(frozen=True)
class TableSpec:
    """How one record kind maps onto its table.

    ``owner_column`` identifies the account a row belongs to and
    ``time_column`` orders rows for the read-side summaries.
    """

    table: str
    columns: tuple[str, ...]
    conflict_columns: tuple[str, ...]
    to_row: Callable[[Any, str], tuple]
    owner_column: str
    time_column: str
    skip_reason: Callable[[Any], str | None] = lambda record: None

    @property
    def query(self) -> str:
        return build_upsert_query(
            self.table,
            list(self.columns),
            list(self.conflict_columns),
            returning_inserted=True,
        )

    @property
    def stats_query(self) -> str:
        return (
            f"SELECT COUNT(*) AS total, MIN({self.time_column}) AS earliest, "
            f"MAX({self.time_column}) AS latest "
            f"FROM {self.table} WHERE {self.owner_column}::text = $1"
        )

    @property
    def recent_query(self) -> str:
        return (
            f"SELECT * FROM {self.table} WHERE {self.owner_column}::text = $1 "
            f"ORDER BY {self.time_column} DESC LIMIT $2"
        )


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------


def _cycle_row(cycle: WhoopCycle, owner_id: str) -> tuple:
    score = cycle.score
    return (
        cycle.id, cycle.user_id, cycle.start, cycle.end, cycle.timezone_offset,
        cycle.score_state, score.strain, score.kilojoule,
        score.average_heart_rate, score.max_heart_rate,
    )


def _sleep_row(sleep: WhoopSleep, owner_id: str) -> tuple:
    score = sleep.score if sleep.is_scored else None
    stages = score.stage_summary if score else None
    return (
        sleep.id, sleep.v1_id, sleep.user_id, sleep.cycle_id, sleep.start, sleep.end,
        sleep.timezone_offset, sleep.nap, sleep.score_state,
        score.sleep_performance_percentage if score else None,
        score.respiratory_rate if score else None,
        score.sleep_consistency_percentage if score else None,
        score.sleep_efficiency_percentage if score else None,
        stages.total_in_bed_time_milli if stages else None,
        stages.total_awake_time_milli if stages else None,
        stages.total_light_sleep_time_milli if stages else None,
        stages.total_slow_wave_sleep_time_milli if stages else None,
        stages.total_rem_sleep_time_milli if stages else None,
        stages.disturbance_count if stages else None,
    )


def _recovery_row(recovery: WhoopRecovery, owner_id: str) -> tuple:
    score = recovery.score
    return (
        recovery.cycle_id, recovery.sleep_id, recovery.user_id, recovery.score_state,
        score.recovery_score, score.resting_heart_rate, score.hrv_rmssd_milli,
        score.spo2_percentage, score.skin_temp_celsius, recovery.created_at,
    )


def _workout_row(workout: WhoopWorkout, owner_id: str) -> tuple:
    score = workout.score
    zones = score.zone_durations if score else None
    return (
        workout.id, workout.v1_id, workout.user_id, workout.start, workout.end,
        workout.timezone_offset, workout.sport_id, workout.sport_name, workout.score_state,
        score.strain if score else None,
        score.average_heart_rate if score else None,
        score.max_heart_rate if score else None,
        score.kilojoule if score else None,
        score.distance_meter if score else None,
        score.altitude_gain_meter if score else None,
        score.altitude_change_meter if score else None,
        zones.zone_zero_milli if zones else None,
        zones.zone_one_milli if zones else None,
        zones.zone_two_milli if zones else None,
        zones.zone_three_milli if zones else None,
        zones.zone_four_milli if zones else None,
        zones.zone_five_milli if zones else None,
    )


def _activity_row(activity: StravaActivity, owner_id: str) -> tuple:
    start = activity.start_latlng or []
    end = activity.end_latlng or []
    return (
        activity.id, owner_id, activity.name, activity.sport_type or activity.type,
        activity.start_date, activity.window_timestamp, activity.distance,
        activity.moving_time, activity.elapsed_time, activity.total_elevation_gain,
        activity.average_speed, activity.average_heartrate, activity.max_heartrate,
        activity.map.summary_polyline if activity.map else None,
        start[0] if len(start) == 2 else None,
        start[1] if len(start) == 2 else None,
        end[0] if len(end) == 2 else None,
        end[1] if len(end) == 2 else None,
    )


def _unscored(label: str) -> Callable[[Any], str | None]:
    def _check(record: Any) -> str | None:
        if record.score is None:
            return f"{label} {record.external_id} has no score"
        return None
    return _check


TABLES: dict[tuple[str, str], TableSpec] = {
    ("whoop", "cycles"): TableSpec(
        table="whoop_cycles",
        columns=(
            "id", "user_id", "start_time", "end_time", "timezone_offset",
            "score_state", "strain", "kilojoule", "average_heart_rate", "max_heart_rate",
        ),
        conflict_columns=("id",),
        to_row=_cycle_row,
        owner_column="user_id",
        time_column="start_time",
        skip_reason=_unscored("cycle"),
    ),
    ("whoop", "sleep"): TableSpec(
        table="whoop_sleep",
        columns=(
            "id", "activity_v1_id", "user_id", "cycle_id", "start_time", "end_time",
            "timezone_offset", "nap", "score_state", "sleep_performance_percentage",
            "respiratory_rate", "sleep_consistency_percentage", "sleep_efficiency_percentage",
            "total_in_bed_time_milli", "total_awake_time_milli", "total_light_sleep_time_milli",
            "total_slow_wave_sleep_time_milli", "total_rem_sleep_time_milli", "disturbance_count",
        ),
        conflict_columns=("id",),
        to_row=_sleep_row,
        owner_column="user_id",
        time_column="start_time",
    ),
    ("whoop", "recovery"): TableSpec(
        table="whoop_recovery",
        columns=(
            "cycle_id", "sleep_id", "user_id", "score_state", "recovery_score",
            "resting_heart_rate", "hrv_rmssd_milli", "spo2_percentage",
            "skin_temp_celsius", "recorded_at",
        ),
        conflict_columns=("cycle_id",),
        to_row=_recovery_row,
        owner_column="user_id",
        time_column="recorded_at",
        skip_reason=_unscored("recovery for cycle"),
    ),
    ("whoop", "workouts"): TableSpec(
        table="whoop_workouts",
        columns=(
            "id", "activity_v1_id", "user_id", "start_time", "end_time", "timezone_offset",
            "sport_id", "sport_name", "score_state", "strain", "average_heart_rate",
            "max_heart_rate", "kilojoule", "distance_meter", "altitude_gain_meter",
            "altitude_change_meter", "zone_zero_milli", "zone_one_milli", "zone_two_milli",
            "zone_three_milli", "zone_four_milli", "zone_five_milli",
        ),
        conflict_columns=("id",),
        to_row=_workout_row,
        owner_column="user_id",
        time_column="start_time",
    ),
    ("strava", "activities"): TableSpec(
        table="strava_activities",
        columns=(
            "activity_id", "athlete_id", "name", "sport_type", "start_date", "end_date",
            "distance_meters", "moving_time_seconds", "elapsed_time_seconds",
            "total_elevation_gain", "average_speed_ms", "average_heartrate", "max_heartrate",
            "summary_polyline", "start_lat", "start_lng", "end_lat", "end_lng",
        ),
        conflict_columns=("activity_id",),
        to_row=_activity_row,
        owner_column="athlete_id",
        time_column="start_date",
    ),
}


class RecordStore:
    """Write validated records into their per-kind tables."""

    def __init__(self, pool: asyncpg.Pool | None = None) -> None:
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        return self._pool or get_pool()

    async def upsert(
        self, source: str, kind: str, owner_id: str, records: Sequence[Any]
    ) -> UpsertResult:
        """Upsert ``records`` one statement at a time.

        A constraint or data error on one record is captured in
        ``result.errors`` and the rest of the batch continues.  Connection
        failures propagate.

        Raises:
            KeyError: If ``(source, kind)`` has no table.
        """
        spec = TABLES[(source, kind)]
        result = UpsertResult()
        if not records:
            return result

        query = spec.query
        async with self.pool.acquire() as conn:
            for record in records:
                reason = spec.skip_reason(record)
                if reason:
                    logger.warning("Skipping %s: %s", kind, reason)
                    result.skipped += 1
                    continue
                try:
                    inserted = await conn.fetchval(query, *spec.to_row(record, owner_id))
                except asyncpg.PostgresError as exc:
                    logger.error(
                        "Failed to upsert %s %s %s: %s", source, kind, record.external_id, exc
                    )
                    result.errors.append(f"{kind} {record.external_id}: {exc}")
                    continue
                if inserted:
                    result.inserted += 1
                else:
                    result.updated += 1

        logger.info(
            "Upserted %s %s for %s: %d new, %d updated, %d skipped, %d errors",
            source, kind, owner_id, result.inserted, result.updated,
            result.skipped, len(result.errors),
        )
        return result

    async def summary(
        self, source: str, owner_id: str, recent_limit: int = 10
    ) -> dict[str, KindSummary]:
        """Row counts, date range and newest rows per record kind for one account."""
        kinds = [kind for (table_source, kind) in TABLES if table_source == source]
        summaries: dict[str, KindSummary] = {}
        async with self.pool.acquire() as conn:
            for kind in kinds:
                spec = TABLES[(source, kind)]
                stats = await conn.fetchrow(spec.stats_query, owner_id)
                rows = await conn.fetch(spec.recent_query, owner_id, recent_limit)
                summaries[kind] = KindSummary(
                    total=int(stats["total"] or 0),
                    earliest=stats["earliest"],
                    latest=stats["latest"],
                    recent=[dict(row) for row in rows],
                )
        return summaries
