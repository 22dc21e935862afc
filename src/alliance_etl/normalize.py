"""Normalization functions for alliance stat CSV ingestion.

All functions accept str | None.  Absent input comes back as None; the
number parser raises InvalidNumberError for residue it cannot read so that a
not-a-number value can never be written to storage.
"""

from __future__ import annotations

import re

_WS_RE = re.compile(r"\s+")
_INT_RE = re.compile(r"[+-]?\d+", re.ASCII)
_THOUSANDS_SEPARATOR = ","


class InvalidNumberError(ValueError):
    """Raised when a numeric cell has content that is not a base-10 integer."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"invalid_number: {raw!r}")
        self.raw = raw


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_header
# ---------------------------------------------------------------------------

def normalize_header(value: str | None) -> str:
    """Lowercase a header token and drop every whitespace character.

    "Player Name" → "playername", " World Rank\\t" → "worldrank".
    """
    if value is None:
        return ""
    return _WS_RE.sub("", value.lower())


# ---------------------------------------------------------------------------
# Rule 3: parse_int_with_commas
# ---------------------------------------------------------------------------

def parse_int_with_commas(value: str | None) -> int | None:
    """Parse "1,234" / " 56 " style integers.

    Thousands separators and surrounding whitespace are removed before the
    remainder is read as a signed base-10 integer.  None, empty and
    whitespace-only input → None.  Anything else raises InvalidNumberError.
    """
    if value is None:
        return None
    cleaned = value.replace(_THOUSANDS_SEPARATOR, "").strip()
    if not cleaned:
        return None
    if not _INT_RE.fullmatch(cleaned):
        raise InvalidNumberError(value)
    return int(cleaned)
