"""
Tests for BizSight

Test strategy:
1. Unit tests for individual components (models, codecs, router)
2. Integration tests for the store and flows (in-memory collections)
3. No real API calls in tests (use mocks)
"""

import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from bizsight.models.records import (
    ALL_KINDS,
    AggregateTotals,
    AppointmentData,
    DataExport,
    Expense,
    IncomeData,
    ImportPlan,
    MonthlySummary,
    RecordKind,
    ReplaceProgress,
    ReplaceStatus,
)
from bizsight.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestRecordModels:
    """Tests for record Pydantic models."""

    def test_income_creation(self):
        """Test IncomeData model creation."""
        income = IncomeData(
            source="Consulting",
            amount=1500,
            date=datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        )
        assert income.source == "Consulting"
        assert income.amount == 1500.0

    def test_income_strips_whitespace(self):
        """Test that whitespace is stripped from the source label."""
        income = IncomeData(source="  Consulting  ", amount=10, date=datetime(2024, 3, 1))
        assert income.source == "Consulting"

    def test_income_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        with pytest.raises(ValidationError):
            IncomeData(source="Sales", amount=0, date=datetime(2024, 3, 1))
        with pytest.raises(ValidationError):
            IncomeData(source="Sales", amount=-5, date=datetime(2024, 3, 1))

    def test_expense_rejects_blank_category(self):
        """Test that a whitespace-only category is rejected."""
        with pytest.raises(ValidationError):
            Expense(id="e1", category="   ", amount=10, date=datetime(2024, 3, 1))

    def test_naive_date_is_utc(self):
        """Test that naive timestamps are treated as UTC."""
        income = IncomeData(source="Sales", amount=1, date=datetime(2024, 3, 1, 9, 30))
        assert income.date.tzinfo == timezone.utc
        assert income.date.hour == 9

    def test_appointment_description_defaults(self):
        """Test that a missing or null description becomes an empty string."""
        when = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert AppointmentData(title="Call", date=when).description == ""
        assert AppointmentData(title="Call", date=when, description=None).description == ""


class TestRecordKinds:
    """Tests for per-kind metadata."""

    def test_collection_names(self):
        assert [kind.collection_name for kind in ALL_KINDS] == [
            "incomes", "expenses", "appointments",
        ]
        assert RecordKind.from_collection_name("expenses") is RecordKind.EXPENSE

    def test_unknown_collection_name(self):
        with pytest.raises(ValueError):
            RecordKind.from_collection_name("bills")

    def test_required_fields(self):
        assert RecordKind.INCOME.required_fields == ["source", "amount", "date"]
        assert RecordKind.EXPENSE.required_fields == ["category", "amount", "date"]
        assert RecordKind.APPOINTMENT.required_fields == ["title", "date"]

    def test_export_fields(self):
        assert RecordKind.APPOINTMENT.export_fields == ["id", "title", "description", "date"]

    def test_sort_direction(self):
        assert RecordKind.INCOME.newest_first
        assert RecordKind.EXPENSE.newest_first
        assert not RecordKind.APPOINTMENT.newest_first


class TestDerivedModels:
    """Tests for aggregates, plans and replace progress."""

    def test_totals_is_empty(self):
        assert AggregateTotals().is_empty
        assert not AggregateTotals(total_revenue=1, total_profit=1).is_empty

    def test_monthly_profit(self):
        month = MonthlySummary(month="Mar", year=2024, income=500, expenses=200)
        assert month.profit == 300

    def test_plan_record_count_only_counts_listed_kinds(self):
        plan = ImportPlan(
            kinds=[RecordKind.INCOME],
            incomes=[IncomeData(source="A", amount=1, date=datetime(2024, 1, 1))],
        )
        assert plan.record_count == 1

    def test_replace_progress(self):
        progress = ReplaceProgress.start(list(ALL_KINDS))
        progress.statuses[RecordKind.INCOME] = ReplaceStatus.REPLACED
        progress.statuses[RecordKind.EXPENSE] = ReplaceStatus.FAILED

        assert progress.replaced_kinds == [RecordKind.INCOME]
        assert progress.failed_kind is RecordKind.EXPENSE
        assert progress.untouched_kinds == [RecordKind.APPOINTMENT]
        assert not progress.is_complete

    def test_data_export_records_for(self):
        export = DataExport()
        assert export.records_for(RecordKind.APPOINTMENT) == []


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.RECORD_ADDED,
            description="Record added",
        )
        assert event.event_type == AuditEventType.RECORD_ADDED
        assert event.severity == AuditSeverity.INFO
        assert event.timestamp.tzinfo is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.IMPORT_STARTED,
            correlation_id=correlation_id,
            description="Import started",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "import_started"
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_audit_event_to_sheets_row(self):
        """Test conversion to a worksheet row."""
        event = AuditEventBuilder.record_updated("incomes", "abc", ["amount"])
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[4] == "incomes"
        assert row[5] == "abc"
        assert json.loads(row[8]) == {"fields": ["amount"]}

    def test_audit_event_builder_import_partial(self):
        """Test the partial-import event names every kind's fate."""
        correlation_id = uuid4()
        event = AuditEventBuilder.import_partial(
            source="csv:unified",
            replaced=["incomes"],
            failed="expenses",
            untouched=["appointments"],
            error_message="backend down",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.IMPORT_PARTIAL
        assert event.severity == AuditSeverity.CRITICAL
        assert event.collection == "expenses"
        assert event.details["untouched"] == ["appointments"]
        assert event.correlation_id == correlation_id

    def test_audit_event_builder_import_rejected(self):
        event = AuditEventBuilder.import_rejected("json", "not an object")
        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "not an object"
