"""Deduplication and window filtering for fitness record ingestion.

Providers page with overlapping cursors and the nightly job re-fetches a
trailing window, so the same record routinely arrives more than once.

Dedup keys (each a PRIMARY KEY, so the upsert is the authoritative dedup):
    - whoop_cycles:      id
    - whoop_sleep:       id
    - whoop_recovery:    cycle_id
    - whoop_workouts:    id
    - strava_activities: activity_id
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from src.fitness.base import SyncWindow

logger = logging.getLogger("livedata.sync.dedup")


def unique_in_order(records: Iterable[Any]) -> list[Any]:
    """Drop repeated external ids, keeping the last payload seen for each.

    The output keeps the position of each id's first appearance, so page
    order is preserved while the freshest payload wins.
    """
    by_id: dict[str, Any] = {}
    for record in records:
        by_id[record.external_id] = record
    return list(by_id.values())


def filter_to_window(records: Iterable[Any], window: SyncWindow) -> list[Any]:
    """Keep records whose window timestamp falls inside ``window``.

    Records without a timestamp (an open cycle, a sleep still in progress)
    are never inside a window.
    """
    kept = [r for r in records if window.contains(r.window_timestamp)]
    return kept


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    returning_inserted: bool = False,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes, safe to call multiple times with the same
    data.  On conflict, updates the non-key columns.

    Args:
        table:              Target table name.
        columns:            All columns to insert.
        conflict_columns:   Columns that define the UNIQUE constraint.
        update_columns:     Columns to update on conflict (defaults to non-key columns).
        returning_inserted: Append ``RETURNING (xmax = 0) AS inserted`` so the
                            caller can tell a fresh insert from an update.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in update_columns
        )
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
    if returning_inserted:
        # xmax is 0 only for a row version created by this INSERT
        query += " RETURNING (xmax = 0) AS inserted"
    return query
