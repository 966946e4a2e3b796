"""
Reactive Data Store

Holds the three live record lists the UI renders and derives the
dashboard aggregates from them.

DESIGN DECISION: Writes are write-through, never optimistic.
A mutation returns once the backing collection acknowledged it; the
in-memory list only changes when the collection publishes its next
snapshot. The lists therefore never show something the backing store
does not hold.

FLOW:
1. start() subscribes to every collection
2. Each snapshot replaces one list, recomputes totals, notifies listeners
3. Mutations and imports write to the collections, never to the lists

Bulk imports:
- Input is routed and validated first (MalformedImportError touches nothing)
- Then the affected kinds are replaced one at a time
- Skipped rows and the outcome are recorded in the audit trail
"""

from datetime import date
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from bizsight.audit.logger import AuditLogger, create_correlation_id
from bizsight.interchange.csv_codec import serialize_csv
from bizsight.interchange.json_envelope import envelope_to_dict
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
    RecordKind,
)
from bizsight.queries.aggregates import compute_totals, monthly_breakdown
from bizsight.services.storage.interface import (
    Document,
    NotFoundError,
    RecordCollection,
)
from bizsight.services.storage.replace import (
    BulkReplaceError,
    PartialImportError,
    replace_kinds,
    to_document,
)
from bizsight.validation.import_router import ImportRouter, MalformedImportError


logger = structlog.get_logger(__name__)


class ListState(str, Enum):
    """Lifecycle of one live list."""
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    LIVE = "live"
    ERROR = "error"


Listener = Callable[["DataStore"], None]
RecordInput = Union[BaseModel, Mapping[str, Any]]


class DataStore:
    """
    Live lists of incomes, expenses and appointments plus derived totals.

    Construct it with one collection per kind and pass it around;
    there is no global instance.
    """

    def __init__(
        self,
        incomes: RecordCollection,
        expenses: RecordCollection,
        appointments: RecordCollection,
        audit_logger: Optional[AuditLogger] = None,
        router: Optional[ImportRouter] = None,
    ):
        self._collections: dict[RecordKind, RecordCollection] = {
            RecordKind.INCOME: incomes,
            RecordKind.EXPENSE: expenses,
            RecordKind.APPOINTMENT: appointments,
        }
        self._audit = audit_logger
        self._router = router or ImportRouter()

        self._records: dict[RecordKind, list] = {kind: [] for kind in ALL_KINDS}
        self._states = {kind: ListState.UNINITIALIZED for kind in ALL_KINDS}
        self._errors: dict[RecordKind, Exception] = {}
        self._unsubscribes: dict[RecordKind, Callable[[], None]] = {}
        self._listeners: list[Listener] = []
        self._totals = AggregateTotals()
        self._pending_audits: list[Callable[[], Awaitable[None]]] = []

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to all three collections. Safe to call twice."""
        for kind in ALL_KINDS:
            if kind in self._unsubscribes:
                continue
            self._set_state(kind, ListState.LOADING)
            collection = self._collections[kind]
            self._unsubscribes[kind] = await collection.subscribe(
                partial(self._on_snapshot, kind),
                partial(self._on_error, kind),
            )
        logger.info("store_started", states=self._state_summary())
        await self.flush_audits()

    def stop(self) -> None:
        """
        Unsubscribe everything. The last known lists stay readable.

        Audit events still queued are written by the next flush_audits().
        """
        for kind, unsubscribe in list(self._unsubscribes.items()):
            unsubscribe()
            self._states[kind] = ListState.UNINITIALIZED
        self._unsubscribes.clear()
        logger.info("store_stopped")

    # =========================================================================
    # SUBSCRIPTION CALLBACKS
    # =========================================================================

    def _on_snapshot(self, kind: RecordKind, documents: list[Document]) -> None:
        self._records[kind] = self._to_records(kind, documents)
        self._errors.pop(kind, None)
        self._states[kind] = ListState.LIVE
        self._totals = compute_totals(
            self._records[RecordKind.INCOME],
            self._records[RecordKind.EXPENSE],
        )
        self._notify()

    def _on_error(self, kind: RecordKind, error: Exception) -> None:
        self._errors[kind] = error
        self._states[kind] = ListState.ERROR
        logger.error(
            "subscription_error",
            collection=kind.collection_name,
            error=str(error),
        )
        if self._audit:
            self._pending_audits.append(
                partial(self._audit.log_subscription_error, kind.collection_name, str(error))
            )
        self._notify()

    async def flush_audits(self) -> None:
        """
        Write the audit events raised inside synchronous callbacks.

        Every store operation flushes before it returns, so the writes run
        on the caller's event loop. Call it directly after writing to a
        collection without going through the store.
        """
        while self._pending_audits:
            write = self._pending_audits.pop(0)
            await write()

    def _to_records(self, kind: RecordKind, documents: list[Document]) -> list:
        """Validate documents into records, sorted the way the kind's list reads."""
        records = []
        for document in documents:
            try:
                records.append(kind.record_model.model_validate(document))
            except ValidationError as e:
                logger.warning(
                    "invalid_document_skipped",
                    collection=kind.collection_name,
                    record_id=document.get("id"),
                    error=str(e),
                )
        records.sort(key=lambda record: record.date, reverse=kind.newest_first)
        return records

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """
        Call `callback(store)` after every applied snapshot or state change.
        A listener that raises is logged and audited; the write that
        triggered it still stands.

        Returns a function that removes the listener.
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                listener = getattr(callback, "__qualname__", repr(callback))
                logger.exception("listener_failed", listener=listener)
                if self._audit:
                    self._pending_audits.append(partial(
                        self._audit.log_error,
                        "listener_failed",
                        str(e),
                        {"listener": listener},
                    ))

    def _set_state(self, kind: RecordKind, state: ListState) -> None:
        self._states[kind] = state
        self._notify()

    def _state_summary(self) -> dict[str, str]:
        return {kind.collection_name: state.value for kind, state in self._states.items()}

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def incomes(self) -> list[Income]:
        """Newest first."""
        return list(self._records[RecordKind.INCOME])

    @property
    def expenses(self) -> list[Expense]:
        """Newest first."""
        return list(self._records[RecordKind.EXPENSE])

    @property
    def appointments(self) -> list[Appointment]:
        """Soonest first."""
        return list(self._records[RecordKind.APPOINTMENT])

    def state(self, kind: RecordKind) -> ListState:
        return self._states[kind]

    def last_error(self, kind: RecordKind) -> Optional[Exception]:
        return self._errors.get(kind)

    @property
    def loading(self) -> bool:
        return any(
            state in (ListState.UNINITIALIZED, ListState.LOADING)
            for state in self._states.values()
        )

    @property
    def totals(self) -> AggregateTotals:
        return self._totals

    @property
    def total_revenue(self) -> float:
        return self._totals.total_revenue

    @property
    def total_expenses(self) -> float:
        return self._totals.total_expenses

    @property
    def total_profit(self) -> float:
        return self._totals.total_profit

    def monthly_breakdown(
        self,
        months: int = 6,
        today: Optional[date] = None,
    ) -> list[MonthlySummary]:
        return monthly_breakdown(
            self._records[RecordKind.INCOME],
            self._records[RecordKind.EXPENSE],
            months=months,
            today=today,
        )

    async def _fetch_records(self, kind: RecordKind) -> list:
        """Everything in the backing collection, regardless of list state."""
        documents = await self._collections[kind].fetch_all()
        return self._to_records(kind, documents)

    async def get_all_incomes(self) -> list[Income]:
        return await self._fetch_records(RecordKind.INCOME)

    async def get_all_expenses(self) -> list[Expense]:
        return await self._fetch_records(RecordKind.EXPENSE)

    # =========================================================================
    # SINGLE-RECORD MUTATIONS
    # =========================================================================

    async def _add(self, kind: RecordKind, data: RecordInput) -> str:
        if not isinstance(data, kind.data_model):
            data = kind.data_model.model_validate(
                data.model_dump() if isinstance(data, BaseModel) else data
            )
        try:
            record_id = await self._collections[kind].insert(to_document(data))
        finally:
            await self.flush_audits()
        logger.info("record_added", collection=kind.collection_name, record_id=record_id)
        if self._audit:
            await self._audit.log_record_added(kind.collection_name, record_id)
        return record_id

    async def _current(self, kind: RecordKind, record_id: str):
        for record in self._records[kind]:
            if record.id == record_id:
                return record
        for record in await self._fetch_records(kind):
            if record.id == record_id:
                return record
        raise NotFoundError(f"{kind.collection_name}: no record with id {record_id}")

    async def _update(
        self,
        kind: RecordKind,
        record_id: str,
        changes: Mapping[str, Any],
    ) -> None:
        """
        Apply a partial update.

        Raises:
            ValueError: Unknown field names
            ValidationError: The updated record would be invalid
            NotFoundError: No record with that id
        """
        unknown = set(changes) - set(kind.fields)
        if unknown:
            raise ValueError(
                f"{kind.collection_name}: unknown fields {', '.join(sorted(unknown))}"
            )

        current = await self._current(kind, record_id)
        merged = kind.data_model.model_validate(
            {**current.model_dump(exclude={"id"}), **changes}
        )
        fields = merged.model_dump(include=set(changes))

        try:
            await self._collections[kind].update(record_id, fields)
        finally:
            await self.flush_audits()
        logger.info(
            "record_updated",
            collection=kind.collection_name,
            record_id=record_id,
            fields=sorted(fields),
        )
        if self._audit:
            await self._audit.log_record_updated(
                kind.collection_name, record_id, sorted(fields)
            )

    async def _delete(self, kind: RecordKind, record_id: str) -> None:
        try:
            await self._collections[kind].delete(record_id)
        finally:
            await self.flush_audits()
        logger.info("record_deleted", collection=kind.collection_name, record_id=record_id)
        if self._audit:
            await self._audit.log_record_deleted(kind.collection_name, record_id)

    async def add_income(self, data: Union[IncomeData, Mapping[str, Any]]) -> str:
        return await self._add(RecordKind.INCOME, data)

    async def update_income(self, record_id: str, changes: Mapping[str, Any]) -> None:
        await self._update(RecordKind.INCOME, record_id, changes)

    async def delete_income(self, record_id: str) -> None:
        await self._delete(RecordKind.INCOME, record_id)

    async def add_expense(self, data: Union[ExpenseData, Mapping[str, Any]]) -> str:
        return await self._add(RecordKind.EXPENSE, data)

    async def update_expense(self, record_id: str, changes: Mapping[str, Any]) -> None:
        await self._update(RecordKind.EXPENSE, record_id, changes)

    async def delete_expense(self, record_id: str) -> None:
        await self._delete(RecordKind.EXPENSE, record_id)

    async def add_appointment(self, data: Union[AppointmentData, Mapping[str, Any]]) -> str:
        return await self._add(RecordKind.APPOINTMENT, data)

    async def update_appointment(self, record_id: str, changes: Mapping[str, Any]) -> None:
        await self._update(RecordKind.APPOINTMENT, record_id, changes)

    async def delete_appointment(self, record_id: str) -> None:
        await self._delete(RecordKind.APPOINTMENT, record_id)

    # =========================================================================
    # BULK IMPORT
    # =========================================================================

    async def import_incomes_from_csv(self, rows: list[Mapping[str, str]]) -> ImportReport:
        return await self._route_and_apply(
            "csv:income",
            lambda: self._router.route_single_kind(rows, RecordKind.INCOME),
        )

    async def import_expenses_from_csv(self, rows: list[Mapping[str, str]]) -> ImportReport:
        return await self._route_and_apply(
            "csv:expense",
            lambda: self._router.route_single_kind(rows, RecordKind.EXPENSE),
        )

    async def import_appointments_from_csv(
        self,
        rows: list[Mapping[str, str]],
    ) -> ImportReport:
        return await self._route_and_apply(
            "csv:appointment",
            lambda: self._router.route_single_kind(rows, RecordKind.APPOINTMENT),
        )

    async def import_unified_csv(self, rows: list[Mapping[str, str]]) -> ImportReport:
        """Replace all three kinds from a CSV with a `type` column."""
        return await self._route_and_apply(
            "csv:unified",
            lambda: self._router.route_unified(rows),
        )

    async def import_all_data(self, envelope: Union[DataExport, Mapping[str, Any]]) -> ImportReport:
        """Replace all three kinds from a parsed JSON export envelope."""
        if isinstance(envelope, DataExport):
            envelope = envelope_to_dict(envelope)
        return await self._route_and_apply(
            "json",
            lambda: self._router.route_envelope(envelope),
        )

    async def _route_and_apply(
        self,
        source: str,
        route: Callable[[], ImportPlan],
    ) -> ImportReport:
        try:
            plan = route()
        except MalformedImportError as e:
            logger.warning("import_rejected", source=source, reason=str(e))
            if self._audit:
                await self._audit.log_import_rejected(source, str(e))
            raise
        return await self.apply_import(source, plan)

    async def apply_import(self, source: str, plan: ImportPlan) -> ImportReport:
        """
        Commit a validated plan: replace every kind it lists.

        Raises:
            PartialImportError: Some kinds were replaced before a failure
            BulkReplaceError: Nothing was fully replaced
        """
        correlation_id = create_correlation_id()
        collections = [kind.collection_name for kind in plan.kinds]

        logger.info(
            "import_started",
            source=source,
            collections=collections,
            records=plan.record_count,
            skipped=len(plan.skipped),
        )
        if self._audit:
            await self._audit.log_import_started(
                source, collections, plan.record_count, correlation_id
            )
            if plan.skipped:
                await self._audit.log_rows_skipped(
                    source,
                    [row.model_dump(mode="json") for row in plan.skipped],
                    correlation_id,
                )

        try:
            progress = await replace_kinds(
                self._collections,
                {kind: plan.records_for(kind) for kind in plan.kinds},
            )
        except PartialImportError as e:
            await self.flush_audits()
            if self._audit:
                await self._audit.log_import_partial(
                    source=source,
                    replaced=[k.collection_name for k in e.progress.replaced_kinds],
                    failed=e.progress.failed_kind.collection_name,
                    untouched=[k.collection_name for k in e.progress.untouched_kinds],
                    error_message=str(e.cause),
                    correlation_id=correlation_id,
                )
            raise
        except BulkReplaceError as e:
            await self.flush_audits()
            if self._audit:
                failed = e.progress.failed_kind
                await self._audit.log_import_failed(
                    source=source,
                    failed=failed.collection_name if failed else None,
                    error_message=str(e.cause),
                    correlation_id=correlation_id,
                )
            raise

        await self.flush_audits()

        report = ImportReport(
            source=source,
            replaced_kinds=progress.replaced_kinds,
            inserted=dict(progress.inserted),
            skipped=plan.skipped,
        )
        logger.info(
            "import_completed",
            source=source,
            inserted=report.total_inserted,
            skipped=report.skipped_count,
        )
        if self._audit:
            await self._audit.log_import_completed(
                source,
                {kind.collection_name: count for kind, count in report.inserted.items()},
                report.skipped_count,
                correlation_id,
            )
        return report

    async def delete_all_data(self) -> dict[RecordKind, int]:
        """
        Empty every collection.

        Returns:
            Number of documents deleted per kind
        """
        correlation_id = create_correlation_id()
        deleted = {}
        try:
            for kind in ALL_KINDS:
                collection = self._collections[kind]
                ids = [document["id"] for document in await collection.fetch_all()]
                await collection.delete_many(ids)
                deleted[kind] = len(ids)
        finally:
            await self.flush_audits()

        logger.warning(
            "all_data_deleted",
            deleted={kind.collection_name: count for kind, count in deleted.items()},
        )
        if self._audit:
            await self._audit.log_all_data_deleted(
                {kind.collection_name: count for kind, count in deleted.items()},
                correlation_id,
            )
        return deleted

    # =========================================================================
    # EXPORT
    # =========================================================================

    async def _log_export(self, fmt: str, counts: dict[str, int]) -> None:
        logger.info("data_exported", format=fmt, counts=counts)
        if self._audit:
            await self._audit.log_data_exported(fmt, counts)

    async def export_data(self) -> DataExport:
        """Every record of every kind, read from the backing collections."""
        export = DataExport(
            incomes=await self._fetch_records(RecordKind.INCOME),
            expenses=await self._fetch_records(RecordKind.EXPENSE),
            appointments=await self._fetch_records(RecordKind.APPOINTMENT),
        )
        await self._log_export(
            "json",
            {kind.collection_name: len(export.records_for(kind)) for kind in ALL_KINDS},
        )
        return export

    async def export_csv(self, kind: RecordKind) -> str:
        """Single-kind CSV in the kind's export column order."""
        records = await self._fetch_records(kind)
        await self._log_export(f"csv:{kind.value}", {kind.collection_name: len(records)})
        return serialize_csv(records, kind.export_fields)

    async def export_unified_csv(self) -> str:
        """All kinds in one CSV, discriminated by the `type` column."""
        rows = []
        counts = {}
        for kind in ALL_KINDS:
            records: list[Record] = await self._fetch_records(kind)
            counts[kind.collection_name] = len(records)
            for record in records:
                rows.append({"type": kind.value, **record.model_dump()})
        await self._log_export("csv:unified", counts)
        return serialize_csv(rows, UNIFIED_CSV_FIELDS)
