"""Import validation package."""

from bizsight.validation.import_router import (
    ImportRouter,
    MalformedImportError,
    RowError,
    build_record,
    parse_amount,
    parse_timestamp,
)

__all__ = [
    "ImportRouter",
    "MalformedImportError",
    "RowError",
    "build_record",
    "parse_amount",
    "parse_timestamp",
]
