"""Unit tests for alliance_etl.csv_shape."""

import pytest

from alliance_etl.csv_shape import (
    EMPTY_UPLOAD_MESSAGE,
    CombinedRow,
    CsvParseError,
    EmptyUploadError,
    PlayerDetailsRow,
    PowerRow,
    UploadKind,
    WorldRankingRow,
    decode_upload,
    fallback_positional,
    parse_upload,
    try_headered,
)


# ---------------------------------------------------------------------------
# decode_upload
# ---------------------------------------------------------------------------

class TestDecodeUpload:
    def test_plain_utf8(self):
        assert decode_upload("Ålice,1\n".encode("utf-8")) == "Ålice,1\n"

    def test_bom_is_dropped(self):
        assert decode_upload(b"\xef\xbb\xbfPlayer Name,Power\n") == "Player Name,Power\n"

    def test_invalid_bytes_raise(self):
        with pytest.raises(CsvParseError, match="not UTF-8"):
            decode_upload(b"\xff\xfe\x00A")


# ---------------------------------------------------------------------------
# try_headered
# ---------------------------------------------------------------------------

class TestTryHeadered:
    def test_recognized_header(self):
        rows, header = try_headered("Player Name,Power\nAlice,100\nBob,200\n", UploadKind.POWER)
        assert header == ["playername", "power"]
        assert rows == [
            PowerRow(line_number=2, player_name="Alice", power="100"),
            PowerRow(line_number=3, player_name="Bob", power="200"),
        ]

    def test_header_spacing_and_case_ignored(self):
        rows, _ = try_headered(" PLAYER  name ,pOWER\nAlice,5\n", UploadKind.POWER)
        assert rows[0].player_name == "Alice"
        assert rows[0].power == "5"

    def test_no_known_token_returns_none(self):
        assert try_headered("Alice,100\nBob,200\n", UploadKind.POWER) is None

    def test_empty_text_returns_none(self):
        assert try_headered("", UploadKind.POWER) is None

    def test_header_only_returns_none(self):
        assert try_headered("Player Name,Power\n", UploadKind.POWER) is None

    def test_cells_are_trimmed(self):
        rows, _ = try_headered('playername,power\n  Alice  ," 1,000 "\n', UploadKind.POWER)
        assert rows[0].player_name == "Alice"
        assert rows[0].power == "1,000"

    def test_blank_lines_skipped_but_counted(self):
        rows, _ = try_headered("playername,power\n\nAlice,1\n", UploadKind.POWER)
        assert [r.line_number for r in rows] == [3]

    def test_too_few_fields(self):
        with pytest.raises(CsvParseError) as exc_info:
            try_headered("playername,power\nAlice\n", UploadKind.POWER)
        assert exc_info.value.message == "Too few fields: expected 2 fields but parsed 1"
        assert exc_info.value.line_number == 2

    def test_too_many_fields(self):
        with pytest.raises(CsvParseError, match="Too many fields: expected 2 fields but parsed 3"):
            try_headered("playername,power\nAlice,1,2\n", UploadKind.POWER)

    def test_ragged_rows_fail_even_without_known_header(self):
        with pytest.raises(CsvParseError, match="Too few fields"):
            try_headered("Alice,100\nBob\n", UploadKind.POWER)

    def test_bad_quoting_raises(self):
        with pytest.raises(CsvParseError):
            try_headered('playername,power\n"Alice"x,100\n', UploadKind.POWER)

    def test_unknown_columns_kept_in_source(self):
        rows, _ = try_headered("Player Name,Power,Notes\nAlice,1,new\n", UploadKind.POWER)
        assert rows[0].source == {"playername": "Alice", "power": "1", "notes": "new"}

    def test_missing_name_column_yields_none_name(self):
        rows, _ = try_headered("Name,Power\nAlice,100\n", UploadKind.POWER)
        assert rows[0].player_name is None
        assert rows[0].power == "100"


class TestWorldRankingColumns:
    def test_worldrank_token(self):
        rows, _ = try_headered("Player Name,World Rank,Points\nAlice,7,900\n", UploadKind.WORLD_RANKING)
        assert rows[0] == WorldRankingRow(line_number=2, player_name="Alice", world_rank="7", points="900")

    def test_worldrankplacement_token(self):
        rows, _ = try_headered(
            "playername,worldrankplacement,points\nAlice,8,1\n", UploadKind.WORLD_RANKING
        )
        assert rows[0].world_rank == "8"

    def test_worldrank_preferred_when_both_present(self):
        rows, _ = try_headered(
            "playername,worldrank,worldrankplacement\nAlice,3,9\nBob,,4\n",
            UploadKind.WORLD_RANKING,
        )
        assert rows[0].world_rank == "3"
        assert rows[1].world_rank == "4"


# ---------------------------------------------------------------------------
# fallback_positional
# ---------------------------------------------------------------------------

class TestFallbackPositional:
    def test_power(self):
        rows = fallback_positional('"Bob","1,234"\n', UploadKind.POWER)
        assert rows == [PowerRow(line_number=1, player_name="Bob", power="1,234")]

    def test_player_details(self):
        rows = fallback_positional("Alice,3,12,25\n", UploadKind.PLAYER_DETAILS)
        assert rows == [
            PlayerDetailsRow(
                line_number=1, player_name="Alice",
                alliance_ranking="3", player_rank="12", furnace_level="25",
            )
        ]

    def test_world_ranking(self):
        rows = fallback_positional("Alice,7,900\n", UploadKind.WORLD_RANKING)
        assert rows[0].world_rank == "7"
        assert rows[0].points == "900"

    def test_combined(self):
        rows = fallback_positional("Alice,500,2\n", UploadKind.COMBINED)
        assert rows == [CombinedRow(line_number=1, player_name="Alice", power="500", alliance_ranking="2")]

    def test_short_rows_padded_with_none(self):
        rows = fallback_positional("Alice,3\n", UploadKind.PLAYER_DETAILS)
        assert rows[0].alliance_ranking == "3"
        assert rows[0].player_rank is None
        assert rows[0].furnace_level is None

    def test_extra_columns_ignored(self):
        rows = fallback_positional("Alice,1,extra\n", UploadKind.POWER)
        assert rows[0].power == "1"


# ---------------------------------------------------------------------------
# parse_upload
# ---------------------------------------------------------------------------

class TestParseUpload:
    def test_headered_mode(self):
        parsed = parse_upload("Player Name,Power\nAlice,100\n", UploadKind.POWER)
        assert parsed.mode == "headered"
        assert len(parsed.rows) == 1

    def test_positional_mode(self):
        parsed = parse_upload('"Bob","1,234"\n', UploadKind.POWER)
        assert parsed.mode == "positional"
        assert parsed.rows[0].player_name == "Bob"

    def test_kind_string_value_accepted(self):
        parsed = parse_upload("Alice,500,2\n", UploadKind("combined"))
        assert isinstance(parsed.rows[0], CombinedRow)

    def test_empty_text(self):
        with pytest.raises(EmptyUploadError) as exc_info:
            parse_upload("", UploadKind.POWER)
        assert exc_info.value.message == EMPTY_UPLOAD_MESSAGE

    def test_blank_lines_only(self):
        with pytest.raises(EmptyUploadError):
            parse_upload("\n\n\n", UploadKind.POWER)

    def test_header_only_reread_positionally(self):
        # The lone header row becomes a data row; its power cell is not a
        # number, so ingestion later skips it.
        parsed = parse_upload("Player Name,Power\n", UploadKind.POWER)
        assert parsed.mode == "positional"
        assert parsed.rows == [PowerRow(line_number=1, player_name="Player Name", power="Power")]

    def test_structural_error_propagates(self):
        with pytest.raises(CsvParseError, match="Too many fields"):
            parse_upload("playername,power\nAlice,1,2\n", UploadKind.POWER)
