"""
Main Orchestrator for BizSight

This module ties together all the components and defines the
end-to-end flows for:
1. Data management (file → parse → validate → review → confirm → replace)
2. Dashboard (live lists → totals → monthly chart → insight)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No import replaces anything without explicit confirmation
- Delete-all requires an explicit confirmation flag
- Every step is audited

Preparing an import is read-only: the file is parsed and validated
into a plan the user can review. Only confirm_import() writes.
"""

from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict

from bizsight.agents import InsightAgent, InsightResult, InsightService, InsightStatus
from bizsight.audit import AuditLogger, configure_logging
from bizsight.config import get_settings
from bizsight.interchange import parse_csv, parse_envelope, serialize_envelope
from bizsight.models.audit import AuditEvent
from bizsight.models.records import (
    ALL_KINDS,
    ImportPlan,
    ImportReport,
    RecordKind,
)
from bizsight.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryCollection,
    RecordCollection,
)
from bizsight.store import DataStore
from bizsight.validation import ImportRouter, MalformedImportError


logger = structlog.get_logger(__name__)


class PreparedImport(BaseModel):
    """A validated import awaiting the user's confirmation."""

    model_config = ConfigDict(frozen=True)

    source: str
    plan: ImportPlan

    @property
    def counts(self) -> dict[RecordKind, int]:
        return {kind: len(self.plan.records_for(kind)) for kind in self.plan.kinds}

    @property
    def skipped_count(self) -> int:
        return len(self.plan.skipped)


class DataManagementFlow:
    """
    Orchestrates export, import and delete-all.

    Import flow:
    1. prepare_*  → size check, parse, structural check, row validation
    2. Review     → Present counts and skipped rows (PAUSE)
    3. confirm_import → Replace the affected kinds

    A malformed file fails in step 1 and nothing is touched.
    """

    def __init__(
        self,
        store: DataStore,
        router: Optional[ImportRouter] = None,
        audit_logger: Optional[AuditLogger] = None,
        max_import_bytes: Optional[int] = None,
    ):
        self._store = store
        self._router = router or ImportRouter()
        self._audit_logger = audit_logger
        self._max_import_bytes = max_import_bytes

    async def _reject(self, source: str, error: MalformedImportError) -> None:
        logger.warning("import_rejected", source=source, reason=str(error))
        if self._audit_logger:
            await self._audit_logger.log_import_rejected(source, str(error))

    def _check_size(self, source: str, text: str) -> None:
        if self._max_import_bytes is None:
            return
        size = len(text.encode("utf-8"))
        if size > self._max_import_bytes:
            raise MalformedImportError(
                f"{source}: file is {size} bytes, limit is {self._max_import_bytes}"
            )

    async def _prepare(self, source: str, text: str, route) -> PreparedImport:
        try:
            self._check_size(source, text)
            plan = route(text)
        except MalformedImportError as e:
            await self._reject(source, e)
            raise
        logger.info(
            "import_prepared",
            source=source,
            records=plan.record_count,
            skipped=len(plan.skipped),
        )
        return PreparedImport(source=source, plan=plan)

    async def prepare_json_import(self, text: str) -> PreparedImport:
        """Validate a JSON export envelope. Replaces all kinds on confirm."""
        return await self._prepare(
            "json",
            text,
            lambda t: self._router.route_envelope(parse_envelope(t)),
        )

    async def prepare_csv_import(self, text: str, kind: RecordKind) -> PreparedImport:
        """Validate a single-kind CSV. Replaces only that kind on confirm."""
        return await self._prepare(
            f"csv:{kind.value}",
            text,
            lambda t: self._router.route_single_kind(parse_csv(t), kind),
        )

    async def prepare_unified_csv_import(self, text: str) -> PreparedImport:
        """Validate a unified CSV. Replaces all kinds on confirm."""
        return await self._prepare(
            "csv:unified",
            text,
            lambda t: self._router.route_unified(parse_csv(t)),
        )

    async def confirm_import(self, prepared: PreparedImport) -> ImportReport:
        """
        Commit a prepared import.

        CRITICAL: This is called ONLY after explicit user confirmation.
        """
        return await self._store.apply_import(prepared.source, prepared.plan)

    async def confirm_delete_all(self, confirmed: bool) -> dict[RecordKind, int]:
        """
        Delete every record of every kind.

        Raises:
            PermissionError: If the user did not confirm
        """
        if not confirmed:
            raise PermissionError("Delete-all requires explicit confirmation")
        return await self._store.delete_all_data()

    async def export_json(self) -> tuple[str, str]:
        """Returns (filename, JSON text)."""
        export = await self._store.export_data()
        return "bizsight_data_export.json", serialize_envelope(export)

    async def export_csv(self, kind: RecordKind) -> tuple[str, str]:
        """Returns (filename, CSV text)."""
        text = await self._store.export_csv(kind)
        return f"bizsight_{kind.collection_name}_export.csv", text

    async def export_unified_csv(self) -> tuple[str, str]:
        text = await self._store.export_unified_csv()
        return "bizsight_all_data_export.csv", text

    async def recent_activity(self, limit: int = 20) -> list[AuditEvent]:
        """Latest audit trail entries, newest first."""
        if not self._audit_logger:
            return []
        return await self._audit_logger.recent_events(limit=limit)


class DashboardFlow:
    """
    Feeds the dashboard: totals and chart come from the store,
    the insight from the summarizer.
    """

    def __init__(
        self,
        store: DataStore,
        insight_service: Optional[InsightService] = None,
        months: int = 6,
    ):
        self._store = store
        self._insight_service = insight_service
        self._months = months

    async def insight(self) -> InsightResult:
        if self._insight_service is None:
            return InsightResult(
                status=InsightStatus.FAILED,
                message="Insights are not configured.",
            )
        return await self._insight_service.summarize(
            self._store.totals,
            self._store.monthly_breakdown(months=self._months),
        )


def _sheets_backend() -> tuple[dict[RecordKind, RecordCollection], AuditStorageInterface]:
    # Imported here so the memory backend works without Google libraries configured
    from bizsight.services.storage.google_sheets import (
        GoogleSheetsAuditStorage,
        GoogleSheetsClient,
        GoogleSheetsCollection,
    )

    client = GoogleSheetsClient()
    client.connect()
    collections = {
        kind: GoogleSheetsCollection(kind.collection_name, kind.fields, client)
        for kind in ALL_KINDS
    }
    return collections, GoogleSheetsAuditStorage(client)


def _memory_backend() -> tuple[dict[RecordKind, RecordCollection], AuditStorageInterface]:
    collections = {
        kind: InMemoryCollection(kind.collection_name) for kind in ALL_KINDS
    }
    return collections, InMemoryAuditStorage()


def create_app_components(
    use_storage: bool = True,
) -> tuple[DataStore, DataManagementFlow, DashboardFlow]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the configured storage backend.
                    Set to False for an in-memory store (tests, demos).

    Returns:
        (store, data_management_flow, dashboard_flow)
        The store is not started; await store.start() before reading.
    """
    app_settings = get_settings().app
    configure_logging(json_logs=app_settings.log_json, debug=app_settings.debug_mode)

    collections, audit_storage = None, None
    if use_storage and app_settings.storage_backend == "google_sheets":
        try:
            collections, audit_storage = _sheets_backend()
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))

    if collections is None:
        collections, audit_storage = _memory_backend()

    audit_logger = AuditLogger(audit_storage)
    store = DataStore(
        collections[RecordKind.INCOME],
        collections[RecordKind.EXPENSE],
        collections[RecordKind.APPOINTMENT],
        audit_logger=audit_logger,
    )

    insight_service = None
    try:
        insight_service = InsightService(InsightAgent(), audit_logger=audit_logger)
    except Exception as e:
        logger.warning("insights_not_configured", error=str(e))

    data_flow = DataManagementFlow(
        store,
        audit_logger=audit_logger,
        max_import_bytes=app_settings.max_import_size_bytes,
    )
    dashboard_flow = DashboardFlow(
        store,
        insight_service=insight_service,
        months=app_settings.insight_months,
    )

    return store, data_flow, dashboard_flow
