"""Interchange formats: CSV and the JSON export envelope."""

from bizsight.interchange.csv_codec import (
    escape_value,
    parse_csv,
    serialize_csv,
    split_line,
)
from bizsight.interchange.json_envelope import (
    envelope_to_dict,
    parse_envelope,
    serialize_envelope,
)

__all__ = [
    "envelope_to_dict",
    "escape_value",
    "parse_csv",
    "parse_envelope",
    "serialize_csv",
    "serialize_envelope",
    "split_line",
]
