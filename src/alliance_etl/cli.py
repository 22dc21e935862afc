"""alliance_etl.cli

CLI entrypoint for alliance stat uploads.

Modes (--mode):
  power           — playername, power
  player_details  — playername, allianceranking, playerrank, furnacelevel
  world_ranking   — playername, worldrank|worldrankplacement, points
  combined        — playername, power, allianceranking
  check_existing  — report whether an alliance already has stats for a phase

Usage:
    alliance-etl \\
        --mode power \\
        --db-dsn "$DATABASE_URL" \\
        --csv-path "uploads/day1_power.csv" \\
        --event-id "$EVENT_ID" \\
        --phase-id "$PHASE_ID"

    alliance-etl --mode check_existing --phase-id "$PHASE_ID" --alliance-id "$ALLIANCE_ID"
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import psycopg

from alliance_etl.csv_shape import UploadKind
from alliance_etl.ingest import IngestOutcome, StatUploader
from alliance_etl.shared import RejectWriter, RunCounters, write_run_report

UPLOAD_MODES = [k.value for k in UploadKind]


def _validate_upload_flags(
    csv_path: str | None,
    run_id: str,
) -> None:
    if not csv_path:
        click.echo(f"[{run_id}] ERROR: --csv-path is required for upload modes", err=True)
        sys.exit(1)
    if not Path(csv_path).exists():
        click.echo(f"[{run_id}] FATAL: missing required file: {csv_path}", err=True)
        sys.exit(1)


def _validate_check_existing_flags(
    phase_id: str | None,
    alliance_id: str | None,
    run_id: str,
) -> None:
    missing = [
        flag for flag, value in (("--phase-id", phase_id), ("--alliance-id", alliance_id))
        if not value
    ]
    if missing:
        click.echo(
            f"[{run_id}] ERROR: check_existing requires {', '.join(missing)}",
            err=True,
        )
        sys.exit(1)


def _run_upload(
    uploader: StatUploader,
    mode: str,
    data: bytes,
    event_id: str | None,
    phase_id: str | None,
    alliance_id: str | None,
) -> IngestOutcome:
    kind = UploadKind(mode)
    if kind is UploadKind.POWER:
        return uploader.upload_power(data, event_id, phase_id)
    if kind is UploadKind.PLAYER_DETAILS:
        return uploader.upload_player_details(data, event_id, phase_id)
    if kind is UploadKind.WORLD_RANKING:
        return uploader.upload_world_ranking(data, event_id, phase_id, alliance_id)
    return uploader.upload_combined(data, event_id, phase_id, alliance_id)


@click.command()
@click.option(
    "--mode",
    required=True,
    type=click.Choice([*UPLOAD_MODES, "check_existing"]),
    help="Upload kind, or check_existing",
)
@click.option("--db-dsn", required=True, envvar="DATABASE_URL", help="PostgreSQL DSN")
@click.option("--csv-path", default=None, type=click.Path(), help="[upload modes] Input CSV")
@click.option("--event-id", default=None)
@click.option("--phase-id", default=None)
@click.option(
    "--alliance-id",
    default=None,
    help="[world_ranking|combined|check_existing] Alliance assigned to uploaded players",
)
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/alliance_rejects.csv",
    show_default=True,
)
@click.option(
    "--report-dir",
    default="./artifacts/reports",
    show_default=True,
    type=click.Path(),
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    mode: str,
    db_dsn: str,
    csv_path: str | None,
    event_id: str | None,
    phase_id: str | None,
    alliance_id: str | None,
    dry_run: bool,
    rejects_path: str,
    report_dir: str,
    run_id: str | None,
    log_level: str,
) -> None:
    """Alliance stat upload CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = RunCounters()
    rejects = RejectWriter(Path(rejects_path))

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "check_existing":
        _validate_check_existing_flags(phase_id, alliance_id, run_id)
    else:
        _validate_upload_flags(csv_path, run_id)
        data = Path(csv_path).read_bytes()  # type: ignore[arg-type]

    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        uploader = StatUploader(conn, counters=counters, rejects=rejects, run_id=run_id)

        def dispatch() -> dict:
            if mode == "check_existing":
                return uploader.check_existing_data(phase_id, alliance_id)  # type: ignore[arg-type]
            return _run_upload(
                uploader, mode, data, event_id, phase_id, alliance_id
            ).to_dict()

        if dry_run:
            # Row transactions become savepoints of the forced-rollback block
            with conn.transaction(force_rollback=True):
                outcome = dispatch()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        else:
            outcome = dispatch()
    finally:
        conn.close()
        rejects.close()

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {
            "csv_path": csv_path,
            "event_id": event_id,
            "phase_id": phase_id,
            "alliance_id": alliance_id,
            "rejects_path": str(rejects.path),
        },
        counters,
        outcome=outcome,
        report_dir=Path(report_dir),
    )

    click.echo(f"[{run_id}] {outcome['message']}")
    click.echo(
        f"[{run_id}] Done: "
        f"read={counters.rows_read} "
        f"processed={counters.rows_processed} "
        f"skipped={counters.rows_skipped} "
        f"players_new={counters.players_inserted} "
        f"stats_new={counters.stats_inserted} "
        f"stats_merged={counters.stats_updated}"
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if not outcome["success"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
