"""Tests for the data-management and dashboard flows."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from bizsight.agents import InsightResult, InsightStatus
from bizsight.audit import AuditLogger
from bizsight.models.audit import AuditEventType
from bizsight.models.records import ALL_KINDS, RecordKind
from bizsight.orchestrator import DashboardFlow, DataManagementFlow
from bizsight.services.storage import InMemoryAuditStorage, InMemoryCollection
from bizsight.store import DataStore
from bizsight.validation import MalformedImportError


MARCH_1 = datetime(2024, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest_asyncio.fixture
async def store(audit_storage):
    store = DataStore(
        InMemoryCollection("incomes", [
            {"id": "i1", "source": "Sales", "amount": 1500.0, "date": MARCH_1},
        ]),
        InMemoryCollection("expenses", [
            {"id": "e1", "category": "Rent", "amount": 600.0, "date": MARCH_1},
        ]),
        InMemoryCollection("appointments"),
        audit_logger=AuditLogger(audit_storage),
    )
    await store.start()
    yield store
    store.stop()


@pytest.fixture
def flow(store, audit_storage):
    return DataManagementFlow(store, audit_logger=AuditLogger(audit_storage), max_import_bytes=2048)


class TestDataManagementFlow:
    """Prepare is read-only; confirm commits."""

    @pytest.mark.asyncio
    async def test_prepare_does_not_write(self, flow, store):
        prepared = await flow.prepare_csv_import(
            "source,amount,date\nGrant,200,2024-03-02\n",
            RecordKind.INCOME,
        )

        assert prepared.source == "csv:income"
        assert prepared.counts == {RecordKind.INCOME: 1}
        assert [income.id for income in store.incomes] == ["i1"]

        report = await flow.confirm_import(prepared)

        assert report.total_inserted == 1
        assert [income.source for income in store.incomes] == ["Grant"]
        assert [expense.id for expense in store.expenses] == ["e1"]

    @pytest.mark.asyncio
    async def test_prepare_rejects_malformed(self, flow, audit_storage):
        with pytest.raises(MalformedImportError):
            await flow.prepare_json_import('{"incomes": []}')
        assert audit_storage.events[-1].event_type == AuditEventType.IMPORT_REJECTED

    @pytest.mark.asyncio
    async def test_prepare_rejects_oversized(self, flow):
        text = "source,amount,date\n" + "Sales,1,2024-03-01\n" * 200
        with pytest.raises(MalformedImportError, match="limit"):
            await flow.prepare_csv_import(text, RecordKind.INCOME)

    @pytest.mark.asyncio
    async def test_unified_prepare_lists_all_kinds(self, flow):
        prepared = await flow.prepare_unified_csv_import(
            "type,date,amount,category\nexpense,2024-03-03,10,Fuel\n"
        )
        assert set(prepared.counts) == set(ALL_KINDS)
        assert prepared.counts[RecordKind.EXPENSE] == 1

    @pytest.mark.asyncio
    async def test_delete_all_needs_confirmation(self, flow, store):
        with pytest.raises(PermissionError):
            await flow.confirm_delete_all(False)
        assert len(store.incomes) == 1

        await flow.confirm_delete_all(True)
        assert store.totals.is_empty

    @pytest.mark.asyncio
    async def test_exports(self, flow):
        filename, text = await flow.export_json()
        assert filename == "bizsight_data_export.json"
        assert json.loads(text)["incomes"][0]["source"] == "Sales"

        filename, text = await flow.export_csv(RecordKind.EXPENSE)
        assert filename == "bizsight_expenses_export.csv"
        assert text.startswith("id,category,amount,date\n")

    @pytest.mark.asyncio
    async def test_json_export_reimports(self, flow, store):
        _, text = await flow.export_json()
        prepared = await flow.prepare_json_import(text)
        report = await flow.confirm_import(prepared)

        assert report.total_inserted == 2
        assert store.total_profit == 900
        assert store.incomes[0].id != "i1"

    @pytest.mark.asyncio
    async def test_recent_activity(self, flow, store):
        await flow.export_json()

        events = await flow.recent_activity(limit=5)

        assert [event.event_type for event in events] == [AuditEventType.DATA_EXPORTED]
        assert await DataManagementFlow(store).recent_activity() == []


class TestDashboardFlow:
    @pytest.mark.asyncio
    async def test_insight_uses_store_aggregates(self, store):
        service = MagicMock()
        service.summarize = AsyncMock(
            return_value=InsightResult(status=InsightStatus.OK, message="Solid.")
        )
        dashboard = DashboardFlow(store, insight_service=service, months=6)

        result = await dashboard.insight()

        assert result.message == "Solid."
        totals, monthly = service.summarize.await_args.args
        assert totals.total_profit == 900
        assert len(monthly) == 6

    @pytest.mark.asyncio
    async def test_insight_not_configured(self, store):
        result = await DashboardFlow(store).insight()
        assert result.status == InsightStatus.FAILED
