"""
Audit Models for BizSight

Every write to the books and every bulk operation is logged for audit purposes.
This provides:
1. Traceability of who-changed-what in the ledgers
2. A record of destructive bulk operations (replace-all, delete-all)
3. The detail needed to reconcile a partially failed import

DESIGN DECISION: Audit logs are append-only. We never delete or modify them,
not even during a delete-all.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Single-record writes
    RECORD_ADDED = "record_added"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"

    # Bulk operations
    IMPORT_STARTED = "import_started"
    IMPORT_COMPLETED = "import_completed"
    IMPORT_REJECTED = "import_rejected"
    IMPORT_PARTIAL = "import_partial"
    IMPORT_FAILED = "import_failed"
    ROWS_SKIPPED = "rows_skipped"
    ALL_DATA_DELETED = "all_data_deleted"
    DATA_EXPORTED = "data_exported"

    # Live data
    SUBSCRIPTION_ERROR = "subscription_error"

    # Insight summarizer
    INSIGHT_GENERATED = "insight_generated"
    INSIGHT_FAILED = "insight_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what is this about?
    collection: Optional[str] = Field(
        default=None,
        description="Collection the event concerns (incomes, expenses, appointments)"
    )
    record_id: Optional[str] = Field(
        default=None,
        description="Identifier of the record, for single-record events"
    )

    # Correlation - all events of one bulk operation share this
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered directly by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "collection": self.collection,
            "record_id": self.record_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row for the audit worksheet.

        Columns: event_id, timestamp, event_type, severity, collection,
        record_id, correlation_id, description, details_json,
        error_message, is_user_action
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.collection or "",
            self.record_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_added("incomes", record_id)
        event = AuditEventBuilder.import_partial(source, replaced, failed, ...)
    """

    @staticmethod
    def record_added(collection: str, record_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_ADDED,
            collection=collection,
            record_id=record_id,
            description=f"Record added to {collection}",
            is_user_action=True,
        )

    @staticmethod
    def record_updated(
        collection: str,
        record_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            collection=collection,
            record_id=record_id,
            description=f"Record updated in {collection}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def record_deleted(collection: str, record_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            collection=collection,
            record_id=record_id,
            description=f"Record deleted from {collection}",
            is_user_action=True,
        )

    @staticmethod
    def import_started(
        source: str,
        collections: list[str],
        record_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_STARTED,
            correlation_id=correlation_id,
            description=f"Import from {source} replacing {', '.join(collections)}",
            details={
                "source": source,
                "collections": collections,
                "record_count": record_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def import_completed(
        source: str,
        inserted: dict[str, int],
        skipped: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            correlation_id=correlation_id,
            description=f"Import from {source} completed: {sum(inserted.values())} records",
            details={
                "source": source,
                "inserted": inserted,
                "skipped": skipped,
            },
        )

    @staticmethod
    def import_rejected(
        source: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_REJECTED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Import from {source} rejected as malformed",
            error_message=reason,
            details={"source": source},
        )

    @staticmethod
    def rows_skipped(
        source: str,
        skipped: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROWS_SKIPPED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"{len(skipped)} invalid rows skipped during import from {source}",
            details={
                "source": source,
                "skipped": skipped,
            },
        )

    @staticmethod
    def import_partial(
        source: str,
        replaced: list[str],
        failed: Optional[str],
        untouched: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_PARTIAL,
            severity=AuditSeverity.CRITICAL,
            collection=failed,
            correlation_id=correlation_id,
            description=f"Import from {source} stopped partway; data is partially replaced",
            error_message=error_message,
            details={
                "source": source,
                "replaced": replaced,
                "failed": failed,
                "untouched": untouched,
            },
        )

    @staticmethod
    def import_failed(
        source: str,
        failed: Optional[str],
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_FAILED,
            severity=AuditSeverity.ERROR,
            collection=failed,
            correlation_id=correlation_id,
            description=f"Import from {source} failed",
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def all_data_deleted(
        deleted: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALL_DATA_DELETED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description="All records of every kind deleted",
            details={"deleted": deleted},
            is_user_action=True,
        )

    @staticmethod
    def data_exported(fmt: str, counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_EXPORTED,
            description=f"Data exported as {fmt}",
            details={"format": fmt, "counts": counts},
            is_user_action=True,
        )

    @staticmethod
    def subscription_error(collection: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_ERROR,
            severity=AuditSeverity.ERROR,
            collection=collection,
            description=f"Live subscription to {collection} failed",
            error_message=error_message,
        )

    @staticmethod
    def insight_generated(months: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_GENERATED,
            description="Financial insight generated",
            details={"months": months},
        )

    @staticmethod
    def insight_failed(rate_limited: bool, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_FAILED,
            severity=AuditSeverity.WARNING,
            description=(
                "Insight service rate-limited" if rate_limited
                else "Insight generation failed"
            ),
            error_message=error_message,
            details={"rate_limited": rate_limited},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
