"""Normalization functions for address and donation ingestion.

All parsing functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

UNKNOWN = "UNKNOWN"

# Identifying fields of an address, in key order.
ADDRESS_KEY_FIELDS = ("street_number", "street_name", "postal_code")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: key_segment / natural_key
# ---------------------------------------------------------------------------

def key_segment(value: Any) -> str:
    """Fold one identifying value into its key form.

    Accents are decomposed and dropped, the result lower-cased and stripped of
    everything except letters and digits, in any script.  None becomes the
    empty segment.
    """
    if value is None:
        return ""
    v = unicodedata.normalize("NFKD", str(value))
    return "".join(
        c for c in v.lower() if c.isalnum() and not unicodedata.combining(c)
    )


def natural_key(values: Iterable[Any]) -> str:
    """Concatenate the key segments of ``values`` in the order given."""
    return "".join(key_segment(v) for v in values)


def address_key(record: Mapping[str, Any] | Any) -> str:
    """Return the matching key for an address: number + name + postal code.

    Accepts either a mapping with the target column names or any object
    exposing them as attributes (AddressRecord).
    """
    if isinstance(record, Mapping):
        values = [record.get(f) for f in ADDRESS_KEY_FIELDS]
    else:
        values = [getattr(record, f, None) for f in ADDRESS_KEY_FIELDS]
    return natural_key(values)


# ---------------------------------------------------------------------------
# Rule 4: parse_int
# ---------------------------------------------------------------------------

def parse_int(value: Any) -> int | None:
    """Parse an integer, returning None on failure.

    Accepts ints as-is and numeric strings such as ``"42"`` or ``"42.0"``;
    a fractional part other than zero is a parse failure.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    v = trim(str(value))
    if v is None:
        return None
    try:
        return int(v)
    except ValueError:
        pass
    try:
        d = Decimal(v)
    except InvalidOperation:
        return None
    if not d.is_finite() or d != d.to_integral_value():
        return None
    return int(d)


# ---------------------------------------------------------------------------
# Rule 5: parse_numeric
# ---------------------------------------------------------------------------

def parse_numeric(value: str | None) -> Decimal | None:
    """Parse a decimal number from a string, returning None on failure."""
    v = trim(value)
    if v is None:
        return None
    try:
        d = Decimal(v)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


# ---------------------------------------------------------------------------
# Rule 6: parse_iso_date
# ---------------------------------------------------------------------------

def parse_iso_date(value: str | None) -> date | None:
    """Parse 'YYYY-MM-DD'.  e.g. '2024-03-09' → date(2024, 3, 9)."""
    v = trim(value)
    if v is None:
        return None
    try:
        return datetime.strptime(v, "%Y-%m-%d").date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Helper: parse_name_parts
# ---------------------------------------------------------------------------

def parse_name_parts(full_name: str | None) -> tuple[str | None, str | None]:
    """Split a full name into (first_name, last_name).

    Supports:
    - "Last, First Middle" → ("First Middle", "Last")
    - "First Last"         → ("First", "Last")
    - Single token         → (token, None)
    """
    v = normalize_space(full_name)
    if not v:
        return (None, None)
    if "," in v:
        parts = v.split(",", 1)
        last = trim(parts[0])
        first = trim(parts[1])
        return (first, last)
    tokens = v.split()
    if len(tokens) == 1:
        return (tokens[0], None)
    return (" ".join(tokens[:-1]), tokens[-1])


def normalize_headers(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new dict with header keys whitespace-stripped.

    Non-string keys are dropped: csv.DictReader files values beyond the
    header row under None.
    """
    return {k.strip(): v for k, v in raw.items() if isinstance(k, str)}
