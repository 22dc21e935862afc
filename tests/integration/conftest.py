"""Integration test fixtures.

Applies migrations 0001–0003 against an ephemeral PostgreSQL database
provided by pytest-postgresql, and offers small seeding helpers for the
event / phase / alliance rows that uploads hang off.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_extensions.sql",
    PROJECT_ROOT / "migrations" / "0002_core_entities.sql",
    PROJECT_ROOT / "migrations" / "0003_phase_stats.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (connection, dsn) with the schema applied.

    The connection is left idle with autocommit off, so each
    conn.transaction() block opened by the code under test commits on exit.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

def seed_alliance(conn, name="Iron Wolves", tag="IWF") -> str:
    row = conn.execute(
        "INSERT INTO alliances (name, tag) VALUES (%s, %s) RETURNING id",
        (name, tag),
    ).fetchone()
    conn.commit()
    return str(row[0])


def seed_event(conn, name="Frost Siege", start_date="2026-01-10", phases=("Prep", "Day 1", "Day 2")):
    """Insert an event with phases numbered from 0; return (event_id, [phase_ids])."""
    event_id = conn.execute(
        "INSERT INTO events (name, start_date) VALUES (%s, %s) RETURNING id",
        (name, start_date),
    ).fetchone()[0]
    phase_ids = []
    for order, phase_name in enumerate(phases):
        phase_ids.append(str(conn.execute(
            """
            INSERT INTO event_phases (event_id, name, phase_order)
            VALUES (%s, %s, %s) RETURNING id
            """,
            (event_id, phase_name, order),
        ).fetchone()[0]))
    conn.commit()
    return str(event_id), phase_ids


def seed_alias(conn, main_id: str, alt_id: str) -> None:
    conn.execute("INSERT INTO aliases (main, alt) VALUES (%s, %s)", (main_id, alt_id))
    conn.commit()


@pytest.fixture
def event(db_conn):
    """(event_id, [prep_phase_id, day1_phase_id, day2_phase_id])"""
    conn, _ = db_conn
    return seed_event(conn)


@pytest.fixture
def alliance(db_conn):
    conn, _ = db_conn
    return seed_alliance(conn)
