"""
Integration tests for the reactive store.

All collections are in-memory; the store is started against them the
same way the app starts it against Google Sheets.
"""

import asyncio
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
from pydantic import ValidationError
from structlog.testing import capture_logs

from bizsight.audit import AuditLogger
from bizsight.interchange import parse_csv
from bizsight.models.audit import AuditEventType
from bizsight.models.records import IncomeData, RecordKind
from bizsight.services.storage import (
    InMemoryAuditStorage,
    InMemoryCollection,
    NotFoundError,
    PartialImportError,
    StorageError,
)
from bizsight.store import DataStore, ListState
from bizsight.validation import MalformedImportError


def _at(day: int, month: int = 3) -> datetime:
    return datetime(2024, month, day, 12, 0, tzinfo=timezone.utc)


class UnreadableCollection(InMemoryCollection):
    """Collection whose reads always fail."""

    async def _read_all(self):
        raise StorageError(f"{self.name}: permission denied")


class BrokenInsertCollection(InMemoryCollection):
    async def _insert_document(self, record_id, document):
        raise StorageError(f"{self.name}: quota exceeded")


class FlakyReadCollection(InMemoryCollection):
    """Reads start failing once `fail_reads` is set."""

    fail_reads = False

    async def _read_all(self):
        if self.fail_reads:
            raise StorageError(f"{self.name}: read timed out")
        return await super()._read_all()


INCOME_CSV = (
    "source,amount,date\n"
    "A,1,2024-03-01\n"
    "B,2,2024-03-02\n"
    "C,3,2024-03-03\n"
    "D,4,2024-03-04\n"
)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def collections():
    return {
        RecordKind.INCOME: InMemoryCollection("incomes", [
            {"id": "i1", "source": "Consulting", "amount": 1000.0, "date": _at(1)},
            {"id": "i2", "source": "Sales", "amount": 500.0, "date": _at(15)},
        ]),
        RecordKind.EXPENSE: InMemoryCollection("expenses", [
            {"id": "e1", "category": "Rent", "amount": 600.0, "date": _at(5)},
        ]),
        RecordKind.APPOINTMENT: InMemoryCollection("appointments", [
            {"id": "a2", "title": "Review", "date": _at(20), "description": ""},
            {"id": "a1", "title": "Kickoff", "date": _at(2), "description": "Intro"},
        ]),
    }


def _make_store(collections, audit_storage=None) -> DataStore:
    return DataStore(
        collections[RecordKind.INCOME],
        collections[RecordKind.EXPENSE],
        collections[RecordKind.APPOINTMENT],
        audit_logger=AuditLogger(audit_storage) if audit_storage is not None else None,
    )


@pytest_asyncio.fixture
async def store(collections, audit_storage):
    store = _make_store(collections, audit_storage)
    await store.start()
    yield store
    store.stop()


def _event_types(audit_storage):
    return [event.event_type for event in audit_storage.events]


class TestLifecycle:
    """Tests for start/stop and list states."""

    @pytest.mark.asyncio
    async def test_states_before_and_after_start(self, collections):
        store = _make_store(collections)
        assert store.loading
        assert store.state(RecordKind.INCOME) == ListState.UNINITIALIZED

        await store.start()

        assert not store.loading
        assert all(store.state(kind) == ListState.LIVE for kind in RecordKind)

        store.stop()
        assert collections[RecordKind.INCOME].subscriber_count == 0

    @pytest.mark.asyncio
    async def test_start_twice_subscribes_once(self, collections):
        store = _make_store(collections)
        await store.start()
        await store.start()
        assert collections[RecordKind.EXPENSE].subscriber_count == 1

    @pytest.mark.asyncio
    async def test_subscription_error_only_affects_one_list(self, collections, audit_storage):
        collections[RecordKind.EXPENSE] = UnreadableCollection("expenses")
        store = _make_store(collections, audit_storage)

        with capture_logs() as logs:
            await store.start()

        assert store.state(RecordKind.EXPENSE) == ListState.ERROR
        assert "permission denied" in str(store.last_error(RecordKind.EXPENSE))
        assert store.state(RecordKind.INCOME) == ListState.LIVE
        assert store.total_revenue == 1500
        assert store.total_expenses == 0
        assert any(log["event"] == "subscription_error" for log in logs)
        assert AuditEventType.SUBSCRIPTION_ERROR in _event_types(audit_storage)

    def test_subscription_error_audit_outlives_event_loop(self, collections, audit_storage):
        collections[RecordKind.EXPENSE] = UnreadableCollection("expenses")
        store = _make_store(collections, audit_storage)

        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(store.start())
        finally:
            loop.close()

        assert _event_types(audit_storage) == [AuditEventType.SUBSCRIPTION_ERROR]

    @pytest.mark.asyncio
    async def test_error_after_write_is_audited_before_return(self, collections, audit_storage):
        flaky = FlakyReadCollection("incomes")
        collections[RecordKind.INCOME] = flaky
        store = _make_store(collections, audit_storage)
        await store.start()

        flaky.fail_reads = True
        await store.add_income({"source": "Sales", "amount": 5, "date": _at(1)})

        assert len(flaky) == 1
        assert store.state(RecordKind.INCOME) == ListState.ERROR
        assert _event_types(audit_storage) == [
            AuditEventType.SUBSCRIPTION_ERROR,
            AuditEventType.RECORD_ADDED,
        ]

    @pytest.mark.asyncio
    async def test_invalid_documents_are_skipped(self, collections):
        collections[RecordKind.INCOME] = InMemoryCollection("incomes", [
            {"id": "ok", "source": "Sales", "amount": "250", "date": "2024-03-01T00:00:00Z"},
            {"id": "bad", "source": "Sales", "amount": "", "date": "2024-03-01"},
        ])
        store = _make_store(collections)

        with capture_logs() as logs:
            await store.start()

        assert [income.id for income in store.incomes] == ["ok"]
        assert store.incomes[0].amount == 250.0
        assert logs[0]["event"] == "invalid_document_skipped"
        assert logs[0]["record_id"] == "bad"


class TestReads:
    """Tests for ordering, aggregates and listeners."""

    @pytest.mark.asyncio
    async def test_list_ordering(self, store):
        assert [income.id for income in store.incomes] == ["i2", "i1"]
        assert [appt.id for appt in store.appointments] == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_aggregates_follow_writes(self, store):
        assert store.total_revenue == 1500
        assert store.total_expenses == 600
        assert store.total_profit == 900

        await store.add_expense({"category": "Supplies", "amount": 100, "date": _at(6)})

        assert store.total_expenses == 700
        assert store.total_profit == 800

    @pytest.mark.asyncio
    async def test_monthly_breakdown(self, store):
        months = store.monthly_breakdown(months=3, today=date(2024, 4, 10))

        assert [(m.month, m.year) for m in months] == [("Feb", 2024), ("Mar", 2024), ("Apr", 2024)]
        assert months[1].income == 1500
        assert months[1].expenses == 600
        assert months[0].income == 0

    @pytest.mark.asyncio
    async def test_listener_called_per_snapshot(self, store):
        seen = []
        remove = store.add_listener(lambda s: seen.append(s.total_revenue))

        await store.add_income(IncomeData(source="Grant", amount=500, date=_at(3)))
        assert seen == [2000]

        remove()
        await store.delete_income("i1")
        assert seen == [2000]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_the_write(self, store, audit_storage):
        def broken_render(s):
            raise RuntimeError("render bug")

        store.add_listener(broken_render)
        seen = []
        store.add_listener(lambda s: seen.append(len(s.incomes)))

        with capture_logs() as logs:
            record_id = await store.add_income({"source": "Grant", "amount": 5, "date": _at(3)})

        assert record_id in {income.id for income in store.incomes}
        assert seen == [3]
        failures = [log for log in logs if log["event"] == "listener_failed"]
        assert len(failures) == 1
        assert failures[0]["listener"].endswith("broken_render")
        assert _event_types(audit_storage) == [
            AuditEventType.SYSTEM_ERROR,
            AuditEventType.RECORD_ADDED,
        ]
        assert audit_storage.events[0].error_message == "render bug"

    @pytest.mark.asyncio
    async def test_get_all_reads_backing_store(self, collections):
        store = _make_store(collections)
        incomes = await store.get_all_incomes()
        expenses = await store.get_all_expenses()
        assert [income.id for income in incomes] == ["i2", "i1"]
        assert len(expenses) == 1
        assert store.incomes == []


class TestMutations:
    """Tests for single-record add/update/delete."""

    @pytest.mark.asyncio
    async def test_add_is_write_through(self, store, collections, audit_storage):
        record_id = await store.add_appointment({"title": "Call", "date": _at(10)})

        assert record_id in {appt.id for appt in store.appointments}
        assert len(collections[RecordKind.APPOINTMENT]) == 3
        assert audit_storage.events[-1].event_type == AuditEventType.RECORD_ADDED
        assert audit_storage.events[-1].record_id == record_id

    @pytest.mark.asyncio
    async def test_add_rejects_invalid(self, store, collections):
        with pytest.raises(ValidationError):
            await store.add_income({"source": "", "amount": 10, "date": _at(1)})
        assert len(collections[RecordKind.INCOME]) == 2

    @pytest.mark.asyncio
    async def test_partial_update(self, store, audit_storage):
        await store.update_expense("e1", {"amount": 650})

        assert store.expenses[0].amount == 650
        assert store.expenses[0].category == "Rent"
        assert audit_storage.events[-1].details == {"fields": ["amount"]}

    @pytest.mark.asyncio
    async def test_update_validation(self, store):
        with pytest.raises(ValidationError):
            await store.update_income("i1", {"amount": -1})
        with pytest.raises(ValueError, match="unknown fields"):
            await store.update_income("i1", {"colour": "red"})
        with pytest.raises(NotFoundError):
            await store.update_appointment("nope", {"title": "X"})
        assert store.total_revenue == 1500

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.delete_appointment("a1")
        assert [appt.id for appt in store.appointments] == ["a2"]
        with pytest.raises(NotFoundError):
            await store.delete_appointment("a1")

    @pytest.mark.asyncio
    async def test_backend_failure_propagates(self, collections):
        collections[RecordKind.INCOME] = BrokenInsertCollection("incomes")
        store = _make_store(collections)
        await store.start()

        with pytest.raises(StorageError, match="quota"):
            await store.add_income({"source": "A", "amount": 1, "date": _at(1)})


class TestBulkImport:
    """Tests for the bulk import entry points."""

    @pytest.mark.asyncio
    async def test_single_kind_import_replaces_only_that_kind(self, store, audit_storage):
        rows = parse_csv(
            "source,amount,date\n"
            "Retainer,300,2024-03-03\n"
            "Workshop,200,2024-03-04\n"
        )

        report = await store.import_incomes_from_csv(rows)

        assert report.replaced_kinds == [RecordKind.INCOME]
        assert report.inserted == {RecordKind.INCOME: 2}
        assert sorted(income.source for income in store.incomes) == ["Retainer", "Workshop"]
        assert [expense.id for expense in store.expenses] == ["e1"]
        assert len(store.appointments) == 2
        assert store.total_revenue == 500
        assert _event_types(audit_storage)[-2:] == [
            AuditEventType.IMPORT_STARTED,
            AuditEventType.IMPORT_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_abort_import(self, store, collections, audit_storage):
        def broken_render(s):
            if len(s.incomes) == 4:
                raise RuntimeError("render bug")

        store.add_listener(broken_render)

        report = await store.import_incomes_from_csv(parse_csv(INCOME_CSV))

        assert report.total_inserted == 4
        assert len(collections[RecordKind.INCOME]) == 4
        assert sorted(income.source for income in store.incomes) == ["A", "B", "C", "D"]
        assert _event_types(audit_storage)[-2:] == [
            AuditEventType.SYSTEM_ERROR,
            AuditEventType.IMPORT_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_import_publishes_once_per_phase(self, store):
        counts = []
        store.add_listener(lambda s: counts.append(len(s.incomes)))

        await store.import_incomes_from_csv(parse_csv(INCOME_CSV))

        # cleared, then filled
        assert counts == [0, 4]

    @pytest.mark.asyncio
    async def test_malformed_row_count(self, store, audit_storage):
        text = "\n".join([
            "category,amount,date",
            "Rent,100,2024-03-01",
            "Power,50,2024-03-02",
            "Water,20,2024-03-03,oops",
            "Internet,30,2024-03-04",
        ])
        with capture_logs() as logs:
            report = await store.import_expenses_from_csv(parse_csv(text))

        assert report.total_inserted == 3
        assert len(store.expenses) == 3
        assert len([log for log in logs if log["event"] == "csv_line_skipped"]) == 1

    @pytest.mark.asyncio
    async def test_bad_rows_are_reported(self, store, audit_storage):
        rows = parse_csv("title,date\nCall,2024-03-05\nLunch,someday\n")

        report = await store.import_appointments_from_csv(rows)

        assert report.total_inserted == 1
        assert report.skipped_count == 1
        assert report.skipped[0].row_number == 2
        assert AuditEventType.ROWS_SKIPPED in _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_bad_header_leaves_data_untouched(self, store, audit_storage):
        rows = parse_csv("name,cost,when\nRent,100,2024-03-01\n")

        with pytest.raises(MalformedImportError):
            await store.import_expenses_from_csv(rows)

        assert [expense.id for expense in store.expenses] == ["e1"]
        assert store.total_profit == 900
        assert audit_storage.events[-1].event_type == AuditEventType.IMPORT_REJECTED

    @pytest.mark.asyncio
    async def test_unified_dispatch(self, store):
        rows = parse_csv("\n".join([
            "type,id,date,amount,source,category,title,description",
            "income,,2024-03-10,100,Sales,,,",
            "expense,,2024-03-11,40,,Fuel,,",
            "appointment,,2024-03-12,,,,Call,Bring notes",
            "unknown,,2024-03-13,5,Mystery,,,",
        ]))

        report = await store.import_unified_csv(rows)

        assert [income.source for income in store.incomes] == ["Sales"]
        assert [expense.category for expense in store.expenses] == ["Fuel"]
        assert [appt.title for appt in store.appointments] == ["Call"]
        assert report.skipped_count == 1
        assert report.total_inserted == 3

    @pytest.mark.asyncio
    async def test_json_round_trip_rotates_ids(self, store):
        old_ids = {record.id for record in store.incomes + store.expenses + store.appointments}
        export = await store.export_data()

        report = await store.import_all_data(export)

        new_records = store.incomes + store.expenses + store.appointments
        assert report.total_inserted == 5
        assert len(new_records) == 5
        assert not old_ids & {record.id for record in new_records}
        assert store.total_profit == 900
        assert sorted(appt.title for appt in store.appointments) == ["Kickoff", "Review"]

    @pytest.mark.asyncio
    async def test_malformed_envelope(self, store):
        with pytest.raises(MalformedImportError):
            await store.import_all_data({"incomes": []})
        assert len(store.incomes) == 2

    @pytest.mark.asyncio
    async def test_partial_import_is_reported(self, collections, audit_storage):
        collections[RecordKind.EXPENSE] = BrokenInsertCollection("expenses")
        store = _make_store(collections, audit_storage)
        await store.start()

        rows = parse_csv("\n".join([
            "type,date,amount,source,category,title",
            "income,2024-03-10,100,Sales,,",
            "expense,2024-03-11,40,,Fuel,",
        ]))
        with pytest.raises(PartialImportError):
            await store.import_unified_csv(rows)

        assert [income.source for income in store.incomes] == ["Sales"]
        assert [appt.id for appt in store.appointments] == ["a1", "a2"]
        partial = audit_storage.events[-1]
        assert partial.event_type == AuditEventType.IMPORT_PARTIAL
        assert partial.details["untouched"] == ["appointments"]

    @pytest.mark.asyncio
    async def test_delete_all_data(self, store, audit_storage):
        deleted = await store.delete_all_data()

        assert deleted == {
            RecordKind.INCOME: 2,
            RecordKind.EXPENSE: 1,
            RecordKind.APPOINTMENT: 2,
        }
        assert store.incomes == store.expenses == store.appointments == []
        assert store.totals.is_empty
        assert audit_storage.events[-1].event_type == AuditEventType.ALL_DATA_DELETED


class TestExport:
    """Tests for CSV and JSON export."""

    @pytest.mark.asyncio
    async def test_single_kind_csv(self, store):
        text = await store.export_csv(RecordKind.APPOINTMENT)
        lines = text.split("\n")
        assert lines[0] == "id,title,description,date"
        assert lines[1] == "a1,Kickoff,Intro,2024-03-02T12:00:00+00:00"

    @pytest.mark.asyncio
    async def test_unified_csv_round_trip(self, store):
        text = await store.export_unified_csv()
        assert text.split("\n")[0] == "type,id,date,amount,source,category,title,description"

        report = await store.import_unified_csv(parse_csv(text))

        assert report.skipped_count == 0
        assert report.total_inserted == 5
        assert store.total_profit == 900

    @pytest.mark.asyncio
    async def test_export_is_audited(self, store, audit_storage):
        await store.export_data()
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.DATA_EXPORTED
        assert event.details["counts"] == {"incomes": 2, "expenses": 1, "appointments": 2}
