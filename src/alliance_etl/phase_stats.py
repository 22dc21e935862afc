"""alliance_etl.phase_stats

Field-merging upsert of daily_player_stats rows.

One row exists per (player_id, event_phase_id).  Each call writes only the
columns it is given, so a power upload and a player-details upload for the
same phase accumulate into one row instead of nulling each other out.
"""

from __future__ import annotations

from typing import Mapping

import psycopg
from psycopg import sql

from alliance_etl.shared import RunCounters

STAT_FIELDS = (
    "power",
    "alliance_ranking",
    "player_rank",
    "furnace_level",
    "world_rank_placement",
    "points",
)


def upsert_phase_stats(
    conn: psycopg.Connection,
    player_id: str,
    phase_id: str,
    fields: Mapping[str, int | None],
    counters: RunCounters | None = None,
) -> str:
    """Insert or merge the stat row for (player_id, phase_id).

    Only keys present in `fields` are written on conflict; recorded_at is
    refreshed on every call.  Returns the daily_player_stats id.
    Caller manages the transaction.
    """
    unknown = set(fields) - set(STAT_FIELDS)
    if unknown:
        raise ValueError(f"unknown stat fields: {sorted(unknown)}")

    # Stable column order keeps the generated statement deterministic
    columns = [f for f in STAT_FIELDS if f in fields]
    values = [fields[c] for c in columns]

    insert_cols = sql.SQL(", ").join(
        sql.Identifier(c) for c in ["player_id", "event_phase_id", *columns]
    )
    placeholders = sql.SQL(", ").join(sql.Placeholder() for _ in range(len(columns) + 2))
    updates = sql.SQL(", ").join(
        [
            sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
            for c in columns
        ]
        + [sql.SQL("recorded_at = EXCLUDED.recorded_at")]
    )

    query = sql.SQL(
        """
        INSERT INTO daily_player_stats ({insert_cols}, recorded_at)
        VALUES ({placeholders}, clock_timestamp())
        ON CONFLICT (player_id, event_phase_id) DO UPDATE SET {updates}
        RETURNING id, (xmax = 0) AS inserted
        """
    ).format(insert_cols=insert_cols, placeholders=placeholders, updates=updates)

    row = conn.execute(query, (player_id, phase_id, *values)).fetchone()
    if counters is not None:
        if row[1]:
            counters.stats_inserted += 1
        else:
            counters.stats_updated += 1
    return str(row[0])
