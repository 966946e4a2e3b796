"""
Core Record Models for BizSight

These models define the shapes of everything the data layer stores,
imports, exports and aggregates:
1. The three record kinds (income, expense, appointment)
2. The whole-dataset export envelope
3. Aggregates for the dashboard
4. Import plans, reports and bulk-replace progress

DESIGN DECISION: Field constraints live on the models (non-empty labels,
positive amounts) so a record that cannot exist is never built.
The policy for bad import rows (skip with a warning) lives in the router.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# =============================================================================
# RECORD INPUT SHAPES (no identity yet)
# =============================================================================

class _RecordData(BaseModel):
    """Shared config and date handling for all record shapes."""
    model_config = ConfigDict(str_strip_whitespace=True)

    date: datetime = Field(
        ...,
        description="When the record happened (day + time precision)"
    )

    @field_validator('date')
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are treated as UTC so every list sorts consistently."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class IncomeData(_RecordData):
    """Fields of an income entry, as entered in a form or read from a file."""

    source: str = Field(
        ...,
        min_length=1,
        description="Where the money came from"
    )
    amount: float = Field(
        ...,
        gt=0,
        description="Amount received"
    )


class ExpenseData(_RecordData):
    """Fields of an expense entry."""

    category: str = Field(
        ...,
        min_length=1,
        description="What the money was spent on"
    )
    amount: float = Field(
        ...,
        gt=0,
        description="Amount paid"
    )


class AppointmentData(_RecordData):
    """
    Fields of a calendar appointment.

    Description is optional everywhere it enters the system;
    a missing or null value becomes an empty string here, once.
    """

    title: str = Field(
        ...,
        min_length=1,
        description="Appointment title"
    )
    description: str = Field(
        default="",
        description="Free-text notes"
    )

    @field_validator('description', mode='before')
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v


# =============================================================================
# STORED RECORDS (identity minted by the backing store)
# =============================================================================

class Income(IncomeData):
    id: str = Field(..., description="Identifier assigned by the backing store")


class Expense(ExpenseData):
    id: str = Field(..., description="Identifier assigned by the backing store")


class Appointment(AppointmentData):
    id: str = Field(..., description="Identifier assigned by the backing store")


RecordData = Union[IncomeData, ExpenseData, AppointmentData]
Record = Union[Income, Expense, Appointment]


# =============================================================================
# RECORD KINDS
# =============================================================================

class RecordKind(str, Enum):
    """
    The three record categories.

    Each kind knows its collection name, its models,
    the CSV fields an import requires and how its list is ordered.
    """
    INCOME = "income"
    EXPENSE = "expense"
    APPOINTMENT = "appointment"

    @property
    def collection_name(self) -> str:
        return _COLLECTION_NAMES[self]

    @property
    def data_model(self) -> type:
        return _DATA_MODELS[self]

    @property
    def record_model(self) -> type:
        return _RECORD_MODELS[self]

    @property
    def fields(self) -> list[str]:
        """Document fields, without the identifier."""
        return list(_FIELDS[self])

    @property
    def required_fields(self) -> list[str]:
        """Columns a single-kind CSV must carry."""
        return list(_REQUIRED_FIELDS[self])

    @property
    def export_fields(self) -> list[str]:
        """Column order of the single-kind CSV export."""
        return list(_EXPORT_FIELDS[self])

    @property
    def newest_first(self) -> bool:
        # Appointments read like a calendar, the ledgers like a statement.
        return self is not RecordKind.APPOINTMENT

    @classmethod
    def from_collection_name(cls, name: str) -> "RecordKind":
        for kind, collection in _COLLECTION_NAMES.items():
            if collection == name:
                return kind
        raise ValueError(f"Unknown collection: {name}")


# Fixed order used for exports and multi-kind replace
ALL_KINDS = (RecordKind.INCOME, RecordKind.EXPENSE, RecordKind.APPOINTMENT)

_COLLECTION_NAMES = {
    RecordKind.INCOME: "incomes",
    RecordKind.EXPENSE: "expenses",
    RecordKind.APPOINTMENT: "appointments",
}

_DATA_MODELS = {
    RecordKind.INCOME: IncomeData,
    RecordKind.EXPENSE: ExpenseData,
    RecordKind.APPOINTMENT: AppointmentData,
}

_RECORD_MODELS = {
    RecordKind.INCOME: Income,
    RecordKind.EXPENSE: Expense,
    RecordKind.APPOINTMENT: Appointment,
}

_FIELDS = {
    RecordKind.INCOME: ("source", "amount", "date"),
    RecordKind.EXPENSE: ("category", "amount", "date"),
    RecordKind.APPOINTMENT: ("title", "date", "description"),
}

_REQUIRED_FIELDS = {
    RecordKind.INCOME: ("source", "amount", "date"),
    RecordKind.EXPENSE: ("category", "amount", "date"),
    RecordKind.APPOINTMENT: ("title", "date"),
}

_EXPORT_FIELDS = {
    RecordKind.INCOME: ("id", "source", "amount", "date"),
    RecordKind.EXPENSE: ("id", "category", "amount", "date"),
    RecordKind.APPOINTMENT: ("id", "title", "description", "date"),
}

UNIFIED_CSV_FIELDS = [
    "type",
    "id",
    "date",
    "amount",
    "source",
    "category",
    "title",
    "description",
]


# =============================================================================
# EXPORT ENVELOPE
# =============================================================================

class DataExport(BaseModel):
    """
    Whole-dataset export: all three kinds grouped in one object.

    Serialized as JSON with dates as ISO-8601 strings.
    """

    incomes: list[Income] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    appointments: list[Appointment] = Field(default_factory=list)

    def records_for(self, kind: RecordKind) -> list:
        return getattr(self, kind.collection_name)


# =============================================================================
# AGGREGATES
# =============================================================================

class AggregateTotals(BaseModel):
    """Dashboard totals. Always derived from the current lists, never stored."""

    total_revenue: float = 0.0
    total_expenses: float = 0.0
    total_profit: float = 0.0

    @property
    def is_empty(self) -> bool:
        return (
            self.total_revenue == 0
            and self.total_expenses == 0
            and self.total_profit == 0
        )


class MonthlySummary(BaseModel):
    """Income and expenses for one calendar month (dashboard chart bar)."""

    month: str = Field(..., description="Short month label, e.g. 'Jan'")
    year: int
    income: float = 0.0
    expenses: float = 0.0

    @property
    def profit(self) -> float:
        return self.income - self.expenses


# =============================================================================
# IMPORT MODELS
# =============================================================================

class SkippedRow(BaseModel):
    """An input row that failed validation and was left out of an import."""

    row_number: int = Field(
        ...,
        ge=1,
        description="1-based position of the row among the data rows"
    )
    kind: Optional[RecordKind] = Field(
        default=None,
        description="Kind the row was meant for, if known"
    )
    reason: str
    row: dict[str, Any] = Field(default_factory=dict)


class ImportPlan(BaseModel):
    """
    Validated, classified import input. Nothing has been written yet.

    `kinds` lists the collections the commit will replace.
    A kind can be listed with zero records (its collection is emptied).
    """

    kinds: list[RecordKind]
    incomes: list[IncomeData] = Field(default_factory=list)
    expenses: list[ExpenseData] = Field(default_factory=list)
    appointments: list[AppointmentData] = Field(default_factory=list)
    skipped: list[SkippedRow] = Field(default_factory=list)

    def records_for(self, kind: RecordKind) -> list:
        return getattr(self, kind.collection_name)

    @property
    def record_count(self) -> int:
        return sum(len(self.records_for(kind)) for kind in self.kinds)


class ReplaceStatus(str, Enum):
    """Completion marker for one kind during a bulk replace."""
    PENDING = "pending"
    REPLACED = "replaced"
    FAILED = "failed"


class ReplaceProgress(BaseModel):
    """Per-kind completion markers of a (possibly multi-kind) replace."""

    statuses: dict[RecordKind, ReplaceStatus] = Field(default_factory=dict)
    inserted: dict[RecordKind, int] = Field(default_factory=dict)

    @classmethod
    def start(cls, kinds: list[RecordKind]) -> "ReplaceProgress":
        return cls(statuses={kind: ReplaceStatus.PENDING for kind in kinds})

    def _with_status(self, status: ReplaceStatus) -> list[RecordKind]:
        return [kind for kind, s in self.statuses.items() if s == status]

    @property
    def replaced_kinds(self) -> list[RecordKind]:
        return self._with_status(ReplaceStatus.REPLACED)

    @property
    def failed_kind(self) -> Optional[RecordKind]:
        failed = self._with_status(ReplaceStatus.FAILED)
        return failed[0] if failed else None

    @property
    def untouched_kinds(self) -> list[RecordKind]:
        return self._with_status(ReplaceStatus.PENDING)

    @property
    def is_complete(self) -> bool:
        return all(s == ReplaceStatus.REPLACED for s in self.statuses.values())


class ImportReport(BaseModel):
    """Outcome of a committed import."""

    source: str = Field(
        ...,
        description="What was imported, e.g. 'csv:income', 'csv:unified', 'json'"
    )
    replaced_kinds: list[RecordKind] = Field(default_factory=list)
    inserted: dict[RecordKind, int] = Field(default_factory=dict)
    skipped: list[SkippedRow] = Field(default_factory=list)

    @property
    def total_inserted(self) -> int:
        return sum(self.inserted.values())

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)
