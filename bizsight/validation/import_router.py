"""
Bulk Import Router

Turns parsed import input into an ImportPlan: validated records grouped
by kind, plus the rows that were left out and why.

Three modes:
1. Single-kind CSV (incomes, expenses or appointments)
2. Unified CSV (one file, all kinds, `type` column decides)
3. JSON envelope (the whole-dataset export format)

TWO KINDS OF FAILURE:

STRUCTURAL (fail-fast):
- Missing required columns on the first CSV row
- JSON without the three arrays
- This raises MalformedImportError BEFORE anything is written or deleted

ROW-LEVEL (skip and continue):
- Missing required value, unparseable amount or date, unknown type
- The row is logged, recorded in ImportPlan.skipped and dropped
- It never blocks the rows that did validate

The router never writes. Committing a plan is the store's job.
"""

import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import structlog
from pydantic import BaseModel, ValidationError

from bizsight.models.records import (
    ALL_KINDS,
    ImportPlan,
    RecordKind,
    SkippedRow,
)


logger = structlog.get_logger(__name__)

_KINDS_BY_TYPE = {kind.value: kind for kind in ALL_KINDS}


class MalformedImportError(ValueError):
    """
    The import input does not have the expected shape.

    Raised before any destructive action. `expected` names the shape
    the caller should show the user.
    """

    def __init__(self, message: str, expected: Optional[str] = None):
        super().__init__(message)
        self.expected = expected


class RowError(ValueError):
    """A single row cannot become a record."""
    pass


# =============================================================================
# VALUE PARSING
# =============================================================================

def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 date or timestamp.

    Accepts date-only values and a trailing "Z". Naive values are UTC.

    Raises:
        ValueError: If the value is not a readable timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty date")
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported date value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_amount(value: Any) -> float:
    """
    Parse an amount from a CSV string or a JSON number.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str):
        amount = float(value.strip())
    else:
        raise ValueError(f"not a number: {value!r}")

    if not math.isfinite(amount):
        raise ValueError(f"not a finite number: {value!r}")
    return amount


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def build_record(kind: RecordKind, row: Mapping[str, Any]) -> BaseModel:
    """
    Build the input model for one row of the given kind.

    Raises:
        RowError: With a human-readable reason
    """
    for field in kind.required_fields:
        if _is_blank(row.get(field)):
            raise RowError(f"missing required field '{field}'")

    try:
        date = parse_timestamp(row["date"])
    except ValueError:
        raise RowError(f"unparseable date {row['date']!r}")

    values: dict[str, Any] = {"date": date}
    if kind is RecordKind.APPOINTMENT:
        values["title"] = row["title"]
        values["description"] = row.get("description") or ""
    else:
        label = "source" if kind is RecordKind.INCOME else "category"
        values[label] = row[label]
        try:
            values["amount"] = parse_amount(row["amount"])
        except ValueError:
            raise RowError(f"unparseable amount {row['amount']!r}")

    try:
        return kind.data_model(**values)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise RowError(f"invalid {field}: {first['msg']}")


# =============================================================================
# ROUTER
# =============================================================================

class ImportRouter:
    """
    Validates and classifies parsed import input.

    Every method either raises MalformedImportError (nothing to commit)
    or returns a plan whose `kinds` are the collections to replace.
    """

    def _skip(
        self,
        plan: ImportPlan,
        source: str,
        row_number: int,
        kind: Optional[RecordKind],
        reason: str,
        row: Mapping[str, Any],
    ) -> None:
        logger.warning(
            "import_row_skipped",
            source=source,
            row_number=row_number,
            kind=kind.value if kind else None,
            reason=reason,
            row=dict(row),
        )
        plan.skipped.append(SkippedRow(
            row_number=row_number,
            kind=kind,
            reason=reason,
            row=dict(row),
        ))

    @staticmethod
    def check_headers(
        rows: list[Mapping[str, str]],
        required: list[str],
        source: str,
    ) -> None:
        """
        Fail-fast structural check on the first row.

        Raises:
            MalformedImportError: No rows, or required columns missing
        """
        expected = ",".join(required)
        if not rows:
            raise MalformedImportError(
                f"{source}: CSV file is empty or has no data rows",
                expected=expected,
            )

        missing = [field for field in required if field not in rows[0]]
        if missing:
            raise MalformedImportError(
                f"{source}: missing required columns {', '.join(missing)}; "
                f"expected header with {expected}",
                expected=expected,
            )

    def route_single_kind(
        self,
        rows: list[Mapping[str, str]],
        kind: RecordKind,
    ) -> ImportPlan:
        """Validate a single-kind CSV. The plan replaces only that kind."""
        source = f"csv:{kind.value}"
        self.check_headers(rows, kind.required_fields, source)

        plan = ImportPlan(kinds=[kind])
        records = plan.records_for(kind)

        for row_number, row in enumerate(rows, start=1):
            try:
                records.append(build_record(kind, row))
            except RowError as e:
                self._skip(plan, source, row_number, kind, str(e), row)

        return plan

    def route_unified(self, rows: list[Mapping[str, str]]) -> ImportPlan:
        """
        Validate a unified CSV. The plan replaces all three kinds.

        The date is checked before the `type` dispatch, so a row with a
        bad date is skipped even if its type is unknown.
        """
        source = "csv:unified"
        self.check_headers(rows, ["type", "date"], source)

        plan = ImportPlan(kinds=list(ALL_KINDS))

        for row_number, row in enumerate(rows, start=1):
            try:
                parse_timestamp(row.get("date"))
            except ValueError:
                self._skip(
                    plan, source, row_number, None,
                    f"unparseable date {row.get('date')!r}", row,
                )
                continue

            row_type = (row.get("type") or "").strip().lower()
            kind = _KINDS_BY_TYPE.get(row_type)
            if kind is None:
                self._skip(
                    plan, source, row_number, None,
                    f"unknown type {row.get('type')!r}", row,
                )
                continue

            try:
                plan.records_for(kind).append(build_record(kind, row))
            except RowError as e:
                self._skip(plan, source, row_number, kind, str(e), row)

        return plan

    def route_envelope(self, data: Any) -> ImportPlan:
        """
        Validate a parsed JSON envelope. The plan replaces all three kinds.

        Identifiers in the file are discarded; new ones are minted on insert.
        """
        source = "json"
        expected = '{"incomes": [...], "expenses": [...], "appointments": [...]}'

        if not isinstance(data, Mapping):
            raise MalformedImportError(
                "json: top-level value must be an object",
                expected=expected,
            )
        for kind in ALL_KINDS:
            if not isinstance(data.get(kind.collection_name), list):
                raise MalformedImportError(
                    f"json: '{kind.collection_name}' must be present and be an array",
                    expected=expected,
                )

        plan = ImportPlan(kinds=list(ALL_KINDS))

        for kind in ALL_KINDS:
            records = plan.records_for(kind)
            for row_number, entry in enumerate(data[kind.collection_name], start=1):
                if not isinstance(entry, Mapping):
                    self._skip(
                        plan, source, row_number, kind,
                        "entry is not an object", {"value": entry},
                    )
                    continue
                try:
                    records.append(build_record(kind, entry))
                except RowError as e:
                    self._skip(plan, source, row_number, kind, str(e), entry)

        return plan

