"""
JSON Envelope Codec

Whole-dataset export/import format:

    {
      "incomes":      [{"id", "source", "amount", "date"}, ...],
      "expenses":     [{"id", "category", "amount", "date"}, ...],
      "appointments": [{"id", "title", "date", "description"}, ...]
    }

Dates are ISO-8601 strings. Identifiers are exported for reference only;
import discards them.
"""

import json
from typing import Any

from bizsight.models.records import ALL_KINDS, DataExport
from bizsight.validation.import_router import MalformedImportError


def envelope_to_dict(export: DataExport) -> dict[str, list[dict[str, Any]]]:
    """Envelope as plain JSON-ready data, keys in the documented order."""
    envelope = {}
    for kind in ALL_KINDS:
        columns = ["id"] + kind.fields
        entries = []
        for record in export.records_for(kind):
            dumped = record.model_dump(mode="json")
            entries.append({column: dumped[column] for column in columns})
        envelope[kind.collection_name] = entries
    return envelope


def serialize_envelope(export: DataExport, indent: int = 2) -> str:
    """Pretty-printed JSON text for a whole-dataset export."""
    return json.dumps(envelope_to_dict(export), indent=indent, ensure_ascii=False)


def parse_envelope(text: str) -> Any:
    """
    Parse JSON text. Structure is checked by the import router.

    Raises:
        MalformedImportError: If the text is not valid JSON
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedImportError(
            f"json: invalid JSON ({e.msg} at line {e.lineno})",
            expected='{"incomes": [...], "expenses": [...], "appointments": [...]}',
        ) from e
