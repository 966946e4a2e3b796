"""
Audit Logger

DESIGN DECISION: Every write and every bulk operation is logged.
This provides:
1. Traceability of changes to the books
2. Debugging capability
3. Enough detail to reconcile a partially applied import

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to group the events of one bulk operation
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from bizsight.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from bizsight.services.storage import AuditStorageInterface


def configure_logging(json_logs: bool = True, debug: bool = False) -> None:
    """
    Configure structlog on top of stdlib logging.

    Call once at application start-up. Tests leave structlog unconfigured
    so `structlog.testing.capture_logs` can intercept events.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, if configured (Google Sheets audit worksheet)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("bizsight.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def recent_events(self, limit: int = 20) -> list[AuditEvent]:
        """Newest persisted events first; empty when only logging locally."""
        if not self._storage:
            return []
        return await self._storage.get_recent_events(limit=limit)

    async def log_record_added(self, collection: str, record_id: str) -> None:
        await self.log(AuditEventBuilder.record_added(collection, record_id))

    async def log_record_updated(
        self,
        collection: str,
        record_id: str,
        fields: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.record_updated(collection, record_id, fields))

    async def log_record_deleted(self, collection: str, record_id: str) -> None:
        await self.log(AuditEventBuilder.record_deleted(collection, record_id))

    async def log_import_started(
        self,
        source: str,
        collections: list[str],
        record_count: int,
        correlation_id: UUID,
    ) -> None:
        """Log the start of a destructive import."""
        event = AuditEventBuilder.import_started(
            source=source,
            collections=collections,
            record_count=record_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_completed(
        self,
        source: str,
        inserted: dict[str, int],
        skipped: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.import_completed(
            source=source,
            inserted=inserted,
            skipped=skipped,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_rejected(
        self,
        source: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an import rejected as malformed (nothing was touched)."""
        event = AuditEventBuilder.import_rejected(
            source=source,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rows_skipped(
        self,
        source: str,
        skipped: list[dict],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.rows_skipped(
            source=source,
            skipped=skipped,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_partial(
        self,
        source: str,
        replaced: list[str],
        failed: Optional[str],
        untouched: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a multi-kind import that stopped partway."""
        event = AuditEventBuilder.import_partial(
            source=source,
            replaced=replaced,
            failed=failed,
            untouched=untouched,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_failed(
        self,
        source: str,
        failed: Optional[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.import_failed(
            source=source,
            failed=failed,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_all_data_deleted(
        self,
        deleted: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.all_data_deleted(deleted, correlation_id))

    async def log_data_exported(self, fmt: str, counts: dict[str, int]) -> None:
        await self.log(AuditEventBuilder.data_exported(fmt, counts))

    async def log_subscription_error(self, collection: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.subscription_error(collection, error_message))

    async def log_insight_generated(self, months: int) -> None:
        await self.log(AuditEventBuilder.insight_generated(months))

    async def log_insight_failed(self, rate_limited: bool, error_message: str) -> None:
        await self.log(AuditEventBuilder.insight_failed(rate_limited, error_message))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a bulk operation (import, delete-all).
    Pass it through all subsequent operations.
    """
    return uuid4()
