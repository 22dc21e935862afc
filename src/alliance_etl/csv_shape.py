"""alliance_etl.csv_shape

CSV shape detection and parsing for stat uploads.

The same upload kind may arrive with a header row ("Player Name,Power"), with
differently spaced or cased headers, or with no header at all.  Parsing is a
two-stage strategy:

  1. try_headered       — first row is the header; tokens are lower-cased and
                          stripped of whitespace, then checked against
                          KNOWN_HEADER_TOKENS.
  2. fallback_positional — when no known token is present, or the header is
                          followed by no data rows, the same text is
                          re-read without a header and columns are mapped by
                          the upload kind's fixed positional schema.

Structural problems (quoting errors, ragged rows under a header) are hard
failures carrying the first diagnostic verbatim.  Nothing here touches the
database.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Union

from alliance_etl.normalize import normalize_header, trim

EMPTY_UPLOAD_MESSAGE = "CSV file is empty or has no valid data rows."

KNOWN_HEADER_TOKENS = frozenset({
    "playername",
    "power",
    "allianceranking",
    "playerrank",
    "furnacelevel",
    "worldrankplacement",
    "worldrank",
    "points",
})


class UploadKind(str, Enum):
    POWER = "power"
    PLAYER_DETAILS = "player_details"
    WORLD_RANKING = "world_ranking"
    COMBINED = "combined"


POSITIONAL_SCHEMAS: dict[UploadKind, tuple[str, ...]] = {
    UploadKind.POWER:          ("playername", "power"),
    UploadKind.PLAYER_DETAILS: ("playername", "allianceranking", "playerrank", "furnacelevel"),
    UploadKind.WORLD_RANKING:  ("playername", "worldrankplacement", "points"),
    UploadKind.COMBINED:       ("playername", "power", "allianceranking"),
}


class CsvParseError(Exception):
    """Raised when an upload cannot be turned into data rows."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.line_number = line_number


class EmptyUploadError(CsvParseError):
    """Raised when neither parse strategy yields a data row."""

    def __init__(self) -> None:
        super().__init__(EMPTY_UPLOAD_MESSAGE)


# ---------------------------------------------------------------------------
# Typed row records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PowerRow:
    line_number: int
    player_name: str | None
    power: str | None
    source: dict[str, str | None] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class PlayerDetailsRow:
    line_number: int
    player_name: str | None
    alliance_ranking: str | None
    player_rank: str | None
    furnace_level: str | None
    source: dict[str, str | None] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class WorldRankingRow:
    line_number: int
    player_name: str | None
    world_rank: str | None
    points: str | None
    source: dict[str, str | None] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class CombinedRow:
    line_number: int
    player_name: str | None
    power: str | None
    alliance_ranking: str | None
    source: dict[str, str | None] = field(default_factory=dict, compare=False, repr=False)


StatRow = Union[PowerRow, PlayerDetailsRow, WorldRankingRow, CombinedRow]


def _power_row(line: int, rec: dict[str, str | None]) -> PowerRow:
    return PowerRow(
        line_number=line,
        player_name=trim(rec.get("playername")),
        power=trim(rec.get("power")),
        source=rec,
    )


def _player_details_row(line: int, rec: dict[str, str | None]) -> PlayerDetailsRow:
    return PlayerDetailsRow(
        line_number=line,
        player_name=trim(rec.get("playername")),
        alliance_ranking=trim(rec.get("allianceranking")),
        player_rank=trim(rec.get("playerrank")),
        furnace_level=trim(rec.get("furnacelevel")),
        source=rec,
    )


def _world_ranking_row(line: int, rec: dict[str, str | None]) -> WorldRankingRow:
    # "worldrank" wins over "worldrankplacement" when a file carries both
    return WorldRankingRow(
        line_number=line,
        player_name=trim(rec.get("playername")),
        world_rank=trim(rec.get("worldrank")) or trim(rec.get("worldrankplacement")),
        points=trim(rec.get("points")),
        source=rec,
    )


def _combined_row(line: int, rec: dict[str, str | None]) -> CombinedRow:
    return CombinedRow(
        line_number=line,
        player_name=trim(rec.get("playername")),
        power=trim(rec.get("power")),
        alliance_ranking=trim(rec.get("allianceranking")),
        source=rec,
    )


ROW_BUILDERS: dict[UploadKind, Callable[[int, dict[str, str | None]], StatRow]] = {
    UploadKind.POWER:          _power_row,
    UploadKind.PLAYER_DETAILS: _player_details_row,
    UploadKind.WORLD_RANKING:  _world_ranking_row,
    UploadKind.COMBINED:       _combined_row,
}


@dataclass
class ParsedUpload:
    mode: str  # "headered" | "positional"
    rows: list[StatRow]


# ---------------------------------------------------------------------------
# Low-level reading
# ---------------------------------------------------------------------------

def decode_upload(data: bytes) -> str:
    """Decode upload bytes as UTF-8, dropping a leading BOM."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CsvParseError(f"file is not UTF-8 text: {exc.reason}") from exc


def _read_lines(text: str) -> list[tuple[int, list[str]]]:
    """Return (line_number, fields) for every non-empty CSV record."""
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    records: list[tuple[int, list[str]]] = []
    while True:
        try:
            fields = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            raise CsvParseError(str(exc), reader.line_num) from exc
        if not fields:
            continue
        records.append((reader.line_num, fields))
    return records


# ---------------------------------------------------------------------------
# Stage 1: headered
# ---------------------------------------------------------------------------

def try_headered(
    text: str,
    kind: UploadKind,
) -> tuple[list[StatRow], list[str]] | None:
    """Parse assuming the first record is a header row.

    Returns (rows, normalized_header) when the header contains at least one
    known token and at least one data row follows it.  Otherwise the header
    assumption does not hold and None is returned.  Ragged rows raise
    CsvParseError.
    """
    records = _read_lines(text)
    if not records:
        return None

    _, raw_header = records[0]
    header = [normalize_header(h) for h in raw_header]
    expected = len(header)

    rows: list[StatRow] = []
    build = ROW_BUILDERS[kind]
    for line, fields in records[1:]:
        if len(fields) < expected:
            raise CsvParseError(
                f"Too few fields: expected {expected} fields but parsed {len(fields)}",
                line,
            )
        if len(fields) > expected:
            raise CsvParseError(
                f"Too many fields: expected {expected} fields but parsed {len(fields)}",
                line,
            )
        rows.append(build(line, dict(zip(header, fields))))

    if not rows or not any(token in KNOWN_HEADER_TOKENS for token in header):
        return None
    return rows, header


# ---------------------------------------------------------------------------
# Stage 2: positional fallback
# ---------------------------------------------------------------------------

def fallback_positional(text: str, kind: UploadKind) -> list[StatRow]:
    """Re-read text with no header, mapping columns by position."""
    schema = POSITIONAL_SCHEMAS[kind]
    build = ROW_BUILDERS[kind]
    rows: list[StatRow] = []
    for line, fields in _read_lines(text):
        rec = {
            col: (fields[idx] if idx < len(fields) else None)
            for idx, col in enumerate(schema)
        }
        rows.append(build(line, rec))
    return rows


# ---------------------------------------------------------------------------
# Strategy selector
# ---------------------------------------------------------------------------

def parse_upload(text: str, kind: UploadKind) -> ParsedUpload:
    """Turn upload text into typed rows for the given kind.

    Raises CsvParseError on structural problems or when no data rows remain.
    """
    headered = try_headered(text, kind)
    if headered is not None:
        rows, _header = headered
        return ParsedUpload(mode="headered", rows=rows)

    rows = fallback_positional(text, kind)
    if not rows:
        raise EmptyUploadError()
    return ParsedUpload(mode="positional", rows=rows)
