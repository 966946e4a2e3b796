"""
CSV Codec

Stateless conversion between lists of flat records and CSV text.

Serialization: a value is wrapped in double quotes (inner quotes doubled)
only if it contains a comma, a double quote or a newline. None becomes
an empty field; datetimes are written as ISO-8601.

Parsing: every value comes back as a string. Converting amounts and dates
is the import router's job, not the codec's.

KNOWN LIMITATION: quoted fields containing line breaks are NOT supported.
The text is split into lines before quotes are looked at, so a value with an
embedded newline breaks its row in two. The first fragment is skipped for
its field count; the second may still parse, carrying a stray quote.
Files exported by this module only contain such values if a record
label itself contains a newline. Leading and trailing whitespace of bare
values is also lost, since every field is trimmed on parse.
A field made of a single double quote is not a quoted empty value and
is kept as one quote character.
"""

import re
from datetime import datetime
from typing import Any, Iterable, Mapping, Union

import structlog
from pydantic import BaseModel


logger = structlog.get_logger(__name__)

_LINE_BREAK = re.compile(r"\r?\n")

# Split on commas followed by an even number of quotes up to end of line,
# i.e. commas that are not inside a quoted field.
_FIELD_SEPARATOR = re.compile(r',(?=(?:(?:[^"]*"){2})*[^"]*$)')

_NEEDS_QUOTING = (",", '"', "\n")


CsvRecord = Union[Mapping[str, Any], BaseModel]


def escape_value(value: Any) -> str:
    """Render one field for CSV output."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.isoformat()

    text = str(value)
    if any(ch in text for ch in _NEEDS_QUOTING):
        return '"' + text.replace('"', '""') + '"'
    return text


def _field_value(record: CsvRecord, field: str) -> Any:
    if isinstance(record, BaseModel):
        return getattr(record, field, None)
    return record.get(field)


def serialize_csv(records: Iterable[CsvRecord], field_order: list[str]) -> str:
    """
    Convert records to CSV text.

    Args:
        records: Mappings or pydantic models
        field_order: Columns to emit, in order; also the header row

    Returns:
        Header line plus one line per record, joined with "\\n"
    """
    lines = [",".join(escape_value(field) for field in field_order)]
    for record in records:
        lines.append(
            ",".join(escape_value(_field_value(record, field)) for field in field_order)
        )
    return "\n".join(lines)


def _clean_field(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    return value.replace('""', '"')


def split_line(line: str) -> list[str]:
    """Split one CSV line into cleaned field values."""
    return [_clean_field(field) for field in _FIELD_SEPARATOR.split(line)]


def parse_csv(text: str) -> list[dict[str, str]]:
    """
    Parse CSV text into a list of string-keyed records.

    The first non-empty line is the header. Blank lines are ignored.
    A line whose field count differs from the header's is skipped with
    a warning; the rest of the file is still parsed.
    """
    lines = _LINE_BREAK.split(text)

    header: list[str] = []
    records: list[dict[str, str]] = []

    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue

        if not header:
            header = split_line(line)
            continue

        values = split_line(line)
        if len(values) != len(header):
            logger.warning(
                "csv_line_skipped",
                line_number=line_number,
                expected_fields=len(header),
                found_fields=len(values),
                line=line,
            )
            continue

        records.append(dict(zip(header, values)))

    return records
