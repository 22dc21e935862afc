"""alliance_etl.queries

Read-side projections over the stat tables for dashboards.

Alias pairs (aliases.main, aliases.alt) are folded into one logical player:
an alt reports under its main's id, so per-phase power series of both
identities line up when computing deltas.  Nothing here writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

import psycopg

# Logical id for players aliased as an alt; `p` must be the players alias.
_LOGICAL_PLAYER_ID = """
    COALESCE(
        (SELECT al.main FROM aliases al
         WHERE al.alt = p.id
         ORDER BY al.created_at ASC, al.id ASC
         LIMIT 1),
        p.id
    )
"""

PREP_PHASE_ORDER = 0


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class EventSummary:
    id: str
    name: str
    start_date: date
    end_date: date | None
    phase_count: int
    player_count: int


@dataclass
class PhaseSummary:
    id: str
    name: str
    phase_order: int
    player_count: int
    total_power: int


@dataclass
class PhaseRef:
    id: str
    name: str
    phase_order: int


@dataclass
class PhaseStatRow:
    stat_id: str
    player_id: str
    source_player_id: str
    player_name: str
    alliance_id: str | None
    alliance_name: str | None
    alliance_tag: str | None
    power: int | None
    alliance_ranking: int | None
    player_rank: int | None
    furnace_level: int | None
    world_rank_placement: int | None
    points: int | None
    recorded_at: datetime
    previous_phase_power: int | None = None
    prep_phase_power: int | None = None

    @property
    def previous_phase_delta(self) -> int | None:
        if self.power is None or self.previous_phase_power is None:
            return None
        return self.power - self.previous_phase_power

    @property
    def prep_phase_delta(self) -> int | None:
        if self.power is None or self.prep_phase_power is None:
            return None
        return self.power - self.prep_phase_power


@dataclass
class PhaseHistoryEntry:
    phase_id: str
    phase_name: str
    phase_order: int
    power: int | None
    alliance_ranking: int | None
    player_rank: int | None
    furnace_level: int | None
    world_rank_placement: int | None


@dataclass
class EventHistory:
    event_id: str
    event_name: str
    start_date: date
    phases: list[PhaseHistoryEntry] = field(default_factory=list)


@dataclass
class PlayerHistory:
    player_id: str
    current_name: str
    names: list[tuple[str, datetime]] = field(default_factory=list)
    events: list[EventHistory] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Events and phases
# ---------------------------------------------------------------------------

def list_events(conn: psycopg.Connection) -> list[EventSummary]:
    rows = conn.execute(
        """
        SELECT e.id, e.name, e.start_date, e.end_date,
               COUNT(DISTINCT ep.id) AS phase_count,
               COUNT(DISTINCT dps.player_id) AS player_count
        FROM events e
        LEFT JOIN event_phases ep ON ep.event_id = e.id
        LEFT JOIN daily_player_stats dps ON dps.event_phase_id = ep.id
        GROUP BY e.id, e.name, e.start_date, e.end_date
        ORDER BY e.start_date DESC, e.id ASC
        """
    ).fetchall()
    return [
        EventSummary(str(r[0]), r[1], r[2], r[3], int(r[4]), int(r[5]))
        for r in rows
    ]


def event_phase_summaries(
    conn: psycopg.Connection,
    event_id: str,
) -> list[PhaseSummary]:
    rows = conn.execute(
        """
        SELECT ep.id, ep.name, ep.phase_order,
               COUNT(DISTINCT dps.player_id) AS player_count,
               COALESCE(SUM(dps.power), 0) AS total_power
        FROM event_phases ep
        LEFT JOIN daily_player_stats dps ON dps.event_phase_id = ep.id
        WHERE ep.event_id = %s
        GROUP BY ep.id, ep.name, ep.phase_order
        ORDER BY ep.phase_order
        """,
        (event_id,),
    ).fetchall()
    return [
        PhaseSummary(str(r[0]), r[1], r[2], int(r[3]), int(r[4]))
        for r in rows
    ]


def find_phase_by_slug(
    conn: psycopg.Connection,
    event_id: str,
    slug: str,
) -> PhaseRef | None:
    """Find a phase by its URL slug ("Day 1" ↔ "day-1")."""
    row = conn.execute(
        r"""
        SELECT id, name, phase_order
        FROM event_phases
        WHERE event_id = %s
          AND lower(regexp_replace(name, '\s+', '-', 'g')) = %s
        ORDER BY phase_order
        LIMIT 1
        """,
        (event_id, slug.lower()),
    ).fetchone()
    return PhaseRef(str(row[0]), row[1], row[2]) if row else None


# ---------------------------------------------------------------------------
# Phase leaderboard with deltas
# ---------------------------------------------------------------------------

def _power_series(
    conn: psycopg.Connection,
    event_id: str,
) -> dict[str, dict[int, int]]:
    """logical player id → {phase_order: power} for one event.

    When a main and its alt both have power in the same phase, the larger
    value is kept.
    """
    rows = conn.execute(
        f"""
        SELECT {_LOGICAL_PLAYER_ID} AS logical_id, ep.phase_order, dps.power
        FROM daily_player_stats dps
        JOIN players p ON p.id = dps.player_id
        JOIN event_phases ep ON ep.id = dps.event_phase_id
        WHERE ep.event_id = %s AND dps.power IS NOT NULL
        """,
        (event_id,),
    ).fetchall()
    series: dict[str, dict[int, int]] = {}
    for logical_id, phase_order, power in rows:
        by_phase = series.setdefault(str(logical_id), {})
        if phase_order not in by_phase or power > by_phase[phase_order]:
            by_phase[phase_order] = power
    return series


def phase_stats(
    conn: psycopg.Connection,
    event_id: str,
    phase_id: str,
) -> list[PhaseStatRow]:
    """Stat rows of one phase, highest power first, with phase deltas."""
    phase = conn.execute(
        "SELECT phase_order FROM event_phases WHERE id = %s AND event_id = %s",
        (phase_id, event_id),
    ).fetchone()
    if phase is None:
        return []
    phase_order = phase[0]

    rows = conn.execute(
        f"""
        SELECT dps.id, {_LOGICAL_PLAYER_ID} AS logical_id, p.id, p.current_name,
               p.alliance_id, a.name, a.tag,
               dps.power, dps.alliance_ranking, dps.player_rank,
               dps.furnace_level, dps.world_rank_placement, dps.points,
               dps.recorded_at
        FROM daily_player_stats dps
        JOIN players p ON p.id = dps.player_id
        LEFT JOIN alliances a ON a.id = p.alliance_id
        WHERE dps.event_phase_id = %s
        ORDER BY dps.power DESC NULLS LAST, p.current_name ASC
        """,
        (phase_id,),
    ).fetchall()

    series = _power_series(conn, event_id)
    result: list[PhaseStatRow] = []
    for r in rows:
        logical_id = str(r[1])
        powers = series.get(logical_id, {})
        previous = powers.get(phase_order - 1) if phase_order - 1 >= PREP_PHASE_ORDER else None
        result.append(PhaseStatRow(
            stat_id=str(r[0]),
            player_id=logical_id,
            source_player_id=str(r[2]),
            player_name=r[3],
            alliance_id=str(r[4]) if r[4] else None,
            alliance_name=r[5],
            alliance_tag=r[6],
            power=r[7],
            alliance_ranking=r[8],
            player_rank=r[9],
            furnace_level=r[10],
            world_rank_placement=r[11],
            points=r[12],
            recorded_at=r[13],
            previous_phase_power=previous,
            prep_phase_power=powers.get(PREP_PHASE_ORDER),
        ))
    return result


# ---------------------------------------------------------------------------
# Player history across events
# ---------------------------------------------------------------------------

def player_history(
    conn: psycopg.Connection,
    player_id: str,
) -> PlayerHistory | None:
    """Name history and per-event phase stats for a player and alias partners."""
    player = conn.execute(
        "SELECT id, current_name FROM players WHERE id = %s",
        (player_id,),
    ).fetchone()
    if player is None:
        return None

    history = PlayerHistory(player_id=str(player[0]), current_name=player[1])
    history.names = [
        (r[0], r[1])
        for r in conn.execute(
            """
            SELECT name, changed_at FROM player_name_history
            WHERE player_id = %s
            ORDER BY changed_at DESC, id DESC
            """,
            (player_id,),
        ).fetchall()
    ]

    partner_ids = [
        str(r[0])
        for r in conn.execute(
            """
            SELECT alt FROM aliases WHERE main = %s
            UNION
            SELECT main FROM aliases WHERE alt = %s
            """,
            (player_id, player_id),
        ).fetchall()
    ]
    identity_ids = [history.player_id, *partner_ids]

    events = conn.execute(
        """
        SELECT DISTINCT e.id, e.name, e.start_date
        FROM events e
        JOIN event_phases ep ON ep.event_id = e.id
        JOIN daily_player_stats dps ON dps.event_phase_id = ep.id
        WHERE dps.player_id = ANY(%s::uuid[])
        ORDER BY e.start_date DESC, e.id
        """,
        (identity_ids,),
    ).fetchall()

    for event_id, event_name, start_date in events:
        event = EventHistory(str(event_id), event_name, start_date)
        rows = conn.execute(
            """
            SELECT ep.id, ep.name, ep.phase_order,
                   dps.power, dps.alliance_ranking, dps.player_rank,
                   dps.furnace_level, dps.world_rank_placement
            FROM event_phases ep
            LEFT JOIN daily_player_stats dps
              ON dps.event_phase_id = ep.id
             AND dps.player_id = ANY(%s::uuid[])
            WHERE ep.event_id = %s
            ORDER BY ep.phase_order, (dps.player_id = %s) DESC NULLS LAST
            """,
            (identity_ids, event_id, history.player_id),
        ).fetchall()
        seen: set[str] = set()
        for r in rows:
            # The player's own row wins over an alias partner's in the same phase
            phase_key = str(r[0])
            if phase_key in seen:
                continue
            seen.add(phase_key)
            event.phases.append(PhaseHistoryEntry(phase_key, r[1], r[2], *r[3:8]))
        history.events.append(event)

    return history


# ---------------------------------------------------------------------------
# Upload pre-checks
# ---------------------------------------------------------------------------

def count_alliance_phase_stats(
    conn: psycopg.Connection,
    phase_id: str,
    alliance_id: str,
) -> int:
    row = conn.execute(
        """
        SELECT COUNT(*)
        FROM daily_player_stats dps
        JOIN players p ON p.id = dps.player_id
        WHERE dps.event_phase_id = %s AND p.alliance_id = %s
        """,
        (phase_id, alliance_id),
    ).fetchone()
    return int(row[0])
