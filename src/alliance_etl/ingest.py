"""alliance_etl.ingest

Stat upload ingestion pipeline.

One call ingests one CSV upload for one (event, phase):

  Validating     — known upload kind, file present, event_id and phase_id
                   present.
  Parsing        — csv_shape.parse_upload (headered, else positional).
  RowProcessing  — rows in file order; per row:
                     a. blank player name → skipped, batch continues
                     b. resolve_player (identity.py)
                     c. kind-specific row handler → upsert_phase_stats
                   each row runs in its own conn.transaction().
  Completed      — success outcome with the count of rows handed to a handler.

ParseFailed and StorageFailed are terminal.  A storage error stops the batch;
rows committed before it stay committed.  Validation, parse and storage
failures become an IngestOutcome.  An OSError from the reject file is not a
storage failure and propagates to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import psycopg

from alliance_etl.csv_shape import (
    CombinedRow,
    CsvParseError,
    EmptyUploadError,
    PlayerDetailsRow,
    PowerRow,
    StatRow,
    UploadKind,
    WorldRankingRow,
    decode_upload,
    parse_upload,
)
from alliance_etl.identity import resolve_player
from alliance_etl.normalize import InvalidNumberError, parse_int_with_commas
from alliance_etl.phase_stats import upsert_phase_stats
from alliance_etl.queries import count_alliance_phase_stats
from alliance_etl.shared import RejectWriter, RunCounters

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

@dataclass
class IngestOutcome:
    success: bool
    message: str
    processed_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "count": self.processed_count,
        }


class RowSkipped(Exception):
    """Raised by a row handler when a mandatory field is unparsable."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


RowHandler = Callable[[psycopg.Connection, str, str, Any, RunCounters], None]


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------

def _power_value(raw: str | None) -> int:
    """Blank power reads as 0; unreadable power skips the row."""
    try:
        value = parse_int_with_commas(raw)
    except InvalidNumberError:
        raise RowSkipped(f"invalid_power: {raw!r}") from None
    return 0 if value is None else value


def _optional_fields(
    row: StatRow,
    counters: RunCounters,
    **raw_fields: str | None,
) -> dict[str, int]:
    """Parse optional numeric cells; blank cells are left out entirely.

    A cell with unreadable content is dropped with a warning rather than
    written, so an earlier good value for that column survives.
    """
    fields: dict[str, int] = {}
    for name, raw in raw_fields.items():
        try:
            value = parse_int_with_commas(raw)
        except InvalidNumberError:
            counters.fields_dropped += 1
            msg = (
                f"line {row.line_number} player={row.player_name!r}: "
                f"dropped unparsable {name}={raw!r}"
            )
            counters.warnings.append(msg)
            log.warning(msg)
            continue
        if value is not None:
            fields[name] = value
    return fields


# ---------------------------------------------------------------------------
# Row handlers (one per upload kind)
# ---------------------------------------------------------------------------

def handle_power_row(
    conn: psycopg.Connection,
    player_id: str,
    phase_id: str,
    row: PowerRow,
    counters: RunCounters,
) -> None:
    power = _power_value(row.power)
    upsert_phase_stats(conn, player_id, phase_id, {"power": power}, counters)


def handle_player_details_row(
    conn: psycopg.Connection,
    player_id: str,
    phase_id: str,
    row: PlayerDetailsRow,
    counters: RunCounters,
) -> None:
    fields = _optional_fields(
        row, counters,
        alliance_ranking=row.alliance_ranking,
        player_rank=row.player_rank,
        furnace_level=row.furnace_level,
    )
    upsert_phase_stats(conn, player_id, phase_id, fields, counters)


def handle_world_ranking_row(
    conn: psycopg.Connection,
    player_id: str,
    phase_id: str,
    row: WorldRankingRow,
    counters: RunCounters,
) -> None:
    fields = _optional_fields(
        row, counters,
        world_rank_placement=row.world_rank,
        points=row.points,
    )
    upsert_phase_stats(conn, player_id, phase_id, fields, counters)


def handle_combined_row(
    conn: psycopg.Connection,
    player_id: str,
    phase_id: str,
    row: CombinedRow,
    counters: RunCounters,
) -> None:
    power = _power_value(row.power)
    fields: dict[str, int] = {"power": power}
    fields.update(_optional_fields(row, counters, alliance_ranking=row.alliance_ranking))
    upsert_phase_stats(conn, player_id, phase_id, fields, counters)


ROW_HANDLERS: dict[UploadKind, RowHandler] = {
    UploadKind.POWER:          handle_power_row,
    UploadKind.PLAYER_DETAILS: handle_player_details_row,
    UploadKind.WORLD_RANKING:  handle_world_ranking_row,
    UploadKind.COMBINED:       handle_combined_row,
}


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class StatUploader:
    """Runs stat uploads against an injected psycopg connection.

    The connection must not be left inside an open implicit transaction by
    the caller if per-row commits are wanted: conn.transaction() nests as a
    savepoint when a transaction is already in progress.
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        counters: RunCounters | None = None,
        rejects: RejectWriter | None = None,
        run_id: str | None = None,
    ) -> None:
        self.conn = conn
        self.counters = counters if counters is not None else RunCounters()
        self.rejects = rejects
        self.run_id = run_id

    def _prefix(self) -> str:
        return f"[{self.run_id}] " if self.run_id else ""

    def _skip(self, row: StatRow, reason: str) -> None:
        self.counters.rows_skipped += 1
        msg = (
            f"{self._prefix()}line {row.line_number} "
            f"player={row.player_name!r} skipped: {reason}"
        )
        self.counters.warnings.append(msg)
        log.warning(msg)
        if self.rejects is not None:
            self.rejects.write({"_line": row.line_number, **row.source}, reason)

    def ingest(
        self,
        data: bytes | None,
        event_id: str | None,
        phase_id: str | None,
        kind: UploadKind | str,
        row_handler: RowHandler | None = None,
        alliance_id: str | None = None,
    ) -> IngestOutcome:
        # Validating
        try:
            kind = UploadKind(kind)
        except ValueError:
            return IngestOutcome(False, f"Unknown upload kind: {kind!r}.")
        handler = row_handler or ROW_HANDLERS[kind]

        if not data:
            return IngestOutcome(False, "No CSV file provided.")
        if not event_id or not phase_id:
            return IngestOutcome(False, "Event ID or Phase ID is missing.")

        # Parsing
        try:
            parsed = parse_upload(decode_upload(data), kind)
        except EmptyUploadError as exc:
            log.error("%s%s upload rejected: %s", self._prefix(), kind.value, exc.message)
            return IngestOutcome(False, exc.message)
        except CsvParseError as exc:
            log.error(
                "%s%s upload rejected at line %s: %s",
                self._prefix(), kind.value, exc.line_number, exc.message,
            )
            return IngestOutcome(False, f"CSV parsing errors: {exc.message}")

        log.info(
            "%s%s upload: %d rows parsed (%s) for phase %s",
            self._prefix(), kind.value, len(parsed.rows), parsed.mode, phase_id,
        )

        # RowProcessing
        processed = 0
        try:
            for row in parsed.rows:
                self.counters.rows_read += 1
                if not row.player_name:
                    self._skip(row, "missing_player_name")
                    continue

                skipped: RowSkipped | None = None
                with self.conn.transaction():
                    player_id = resolve_player(
                        self.conn, row.player_name, alliance_id, self.counters
                    )
                    try:
                        handler(self.conn, player_id, phase_id, row, self.counters)
                    except RowSkipped as exc:
                        skipped = exc
                processed += 1
                self.counters.rows_processed += 1
                if skipped is not None:
                    self._skip(row, skipped.reason)
        except (psycopg.Error, ValueError) as exc:
            self.counters.storage_errors += 1
            log.exception(
                "%s%s upload aborted after %d rows", self._prefix(), kind.value, processed
            )
            return IngestOutcome(False, f"Database error: {exc}", processed)

        return IngestOutcome(
            True,
            f"CSV data uploaded successfully! Processed {processed} players.",
            processed,
        )

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    def upload_power(
        self, data: bytes | None, event_id: str | None, phase_id: str | None,
    ) -> IngestOutcome:
        """playername, power → power."""
        return self.ingest(data, event_id, phase_id, UploadKind.POWER)

    def upload_player_details(
        self, data: bytes | None, event_id: str | None, phase_id: str | None,
    ) -> IngestOutcome:
        """playername, allianceranking, playerrank, furnacelevel."""
        return self.ingest(data, event_id, phase_id, UploadKind.PLAYER_DETAILS)

    def upload_world_ranking(
        self,
        data: bytes | None,
        event_id: str | None,
        phase_id: str | None,
        alliance_id: str | None = None,
    ) -> IngestOutcome:
        """playername, worldrank|worldrankplacement, points; may reassign alliance."""
        return self.ingest(
            data, event_id, phase_id, UploadKind.WORLD_RANKING, alliance_id=alliance_id
        )

    def upload_combined(
        self,
        data: bytes | None,
        event_id: str | None,
        phase_id: str | None,
        alliance_id: str | None = None,
    ) -> IngestOutcome:
        """playername, power, allianceranking; may reassign alliance."""
        return self.ingest(
            data, event_id, phase_id, UploadKind.COMBINED, alliance_id=alliance_id
        )

    def check_existing_data(self, phase_id: str, alliance_id: str) -> dict[str, Any]:
        """Report whether the alliance already has stats recorded for the phase."""
        try:
            with self.conn.transaction():
                count = count_alliance_phase_stats(self.conn, phase_id, alliance_id)
        except psycopg.Error as exc:
            log.exception("%scheck_existing_data failed", self._prefix())
            return {
                "success": False,
                "has_data": False,
                "count": 0,
                "message": f"Error checking existing data: {exc}",
            }
        return {
            "success": True,
            "has_data": count > 0,
            "count": count,
            "message": (
                f"Found {count} existing records for this alliance and phase."
                if count > 0
                else "No existing data found."
            ),
        }
