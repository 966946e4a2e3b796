"""
Data Models Package

This package contains all Pydantic models used by the BizSight data layer.
All records flowing through the system must conform to these schemas.
"""

from bizsight.models.records import (
    ALL_KINDS,
    UNIFIED_CSV_FIELDS,
    AggregateTotals,
    Appointment,
    AppointmentData,
    DataExport,
    Expense,
    ExpenseData,
    ImportPlan,
    ImportReport,
    Income,
    IncomeData,
    MonthlySummary,
    Record,
    RecordData,
    RecordKind,
    ReplaceProgress,
    ReplaceStatus,
    SkippedRow,
)
from bizsight.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "ALL_KINDS",
    "UNIFIED_CSV_FIELDS",
    "AggregateTotals",
    "Appointment",
    "AppointmentData",
    "DataExport",
    "Expense",
    "ExpenseData",
    "ImportPlan",
    "ImportReport",
    "Income",
    "IncomeData",
    "MonthlySummary",
    "Record",
    "RecordData",
    "RecordKind",
    "ReplaceProgress",
    "ReplaceStatus",
    "SkippedRow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
