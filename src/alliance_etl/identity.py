"""alliance_etl.identity

Player identity resolution.

A display name in an upload is resolved to one durable players.id:

  1. current-name match   → that player; alliance overwritten only when an
                            alliance_id was supplied.
  2. history-name match   → that player; the name is promoted back to
                            current_name and alliance_id is set to the
                            supplied value OR CLEARED when none was supplied.
  3. no match             → new player plus its first name-history entry.
  4. after 1 or 2         → name-history entry appended if (player, name)
                            is not yet recorded.

The alliance handling differs between steps 1 and 2; tests pin both.

None of the steps take locks.  Two callers resolving the same brand-new name
at the same time can both reach step 3 and create two players.
"""

from __future__ import annotations

import logging

import psycopg

from alliance_etl.normalize import trim
from alliance_etl.shared import RunCounters

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def find_player_by_current_name(
    conn: psycopg.Connection,
    name: str,
) -> str | None:
    row = conn.execute(
        """
        SELECT id FROM players
        WHERE current_name = %s
        ORDER BY created_at ASC, id ASC
        LIMIT 1
        """,
        (name,),
    ).fetchone()
    return str(row[0]) if row else None


def find_player_by_name_history(
    conn: psycopg.Connection,
    name: str,
) -> str | None:
    """Return the player who most recently recorded `name` in their history."""
    row = conn.execute(
        """
        SELECT p.id
        FROM players p
        JOIN player_name_history pnh ON pnh.player_id = p.id
        WHERE pnh.name = %s
        ORDER BY pnh.changed_at DESC, p.id ASC
        LIMIT 1
        """,
        (name,),
    ).fetchone()
    return str(row[0]) if row else None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def insert_player(
    conn: psycopg.Connection,
    name: str,
    alliance_id: str | None,
) -> str:
    row = conn.execute(
        """
        INSERT INTO players (current_name, alliance_id)
        VALUES (%s, %s)
        RETURNING id
        """,
        (name, alliance_id),
    ).fetchone()
    return str(row[0])


def ensure_name_history(
    conn: psycopg.Connection,
    player_id: str,
    name: str,
) -> bool:
    """Append (player_id, name) to the history log; True if a row was added."""
    row = conn.execute(
        """
        INSERT INTO player_name_history (player_id, name, changed_at)
        VALUES (%s, %s, clock_timestamp())
        ON CONFLICT (player_id, name) DO NOTHING
        RETURNING id
        """,
        (player_id, name),
    ).fetchone()
    return row is not None


def _set_alliance(
    conn: psycopg.Connection,
    player_id: str,
    alliance_id: str,
) -> None:
    conn.execute(
        "UPDATE players SET alliance_id = %s, updated_at = now() WHERE id = %s",
        (alliance_id, player_id),
    )


def _promote_name(
    conn: psycopg.Connection,
    player_id: str,
    name: str,
    alliance_id: str | None,
) -> None:
    conn.execute(
        """
        UPDATE players
        SET current_name = %s, alliance_id = %s, updated_at = now()
        WHERE id = %s
        """,
        (name, alliance_id, player_id),
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve_player(
    conn: psycopg.Connection,
    display_name: str,
    alliance_id: str | None = None,
    counters: RunCounters | None = None,
) -> str:
    """Resolve display_name to a players.id, creating the player if needed.

    Caller manages the transaction.  Raises ValueError on a blank name.
    """
    if trim(display_name) is None:
        raise ValueError("display_name must be non-empty")

    # Step 1: current name
    player_id = find_player_by_current_name(conn, display_name)
    if player_id is not None:
        if alliance_id:
            _set_alliance(conn, player_id, alliance_id)
        if counters is not None:
            counters.players_matched_current += 1
    else:
        # Step 2: any name the player has used before
        player_id = find_player_by_name_history(conn, display_name)
        if player_id is not None:
            _promote_name(conn, player_id, display_name, alliance_id or None)
            log.info(
                "promoted historical name %r to current for player %s",
                display_name, player_id,
            )
            if counters is not None:
                counters.players_matched_history += 1

    # Step 3: first sighting
    if player_id is None:
        player_id = insert_player(conn, display_name, alliance_id or None)
        ensure_name_history(conn, player_id, display_name)
        if counters is not None:
            counters.players_inserted += 1
            counters.name_history_inserted += 1
        return player_id

    # Step 4: keep the current name in the history log
    if ensure_name_history(conn, player_id, display_name) and counters is not None:
        counters.name_history_inserted += 1
    return player_id
