"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted collection store because:
1. The owner can view and fix their books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a small business)
- No multi-sheet transactions (bulk replace reports partial failure instead)
- No server push: subscribers are notified after writes made through
  this client, not after edits made directly in the spreadsheet

Each collection is one worksheet: a header row, then one document per row,
identifier in column A. Values are written RAW as strings; the record
models coerce them back (amount -> float, ISO date -> datetime).
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from bizsight.config import get_settings
from bizsight.models.audit import AuditEvent, AuditEventType, AuditSeverity
from bizsight.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Document,
    NotFoundError,
    ObservableCollection,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "collection",
    "record_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsCollection(ObservableCollection):
    """
    Google Sheets implementation of one backing collection.

    Row layout: id, then the collection's fields in order.
    """

    def __init__(
        self,
        name: str,
        fields: list[str],
        client: Optional[GoogleSheetsClient] = None,
    ):
        super().__init__(name)
        self._client = client or GoogleSheetsClient()
        self._fields = list(fields)
        self._columns = ["id"] + self._fields

    def _sheet(self) -> gspread.Worksheet:
        title = self._client.settings.sheet_name_for(self.name)
        return self._client.get_worksheet(title, self._columns)

    def _mint_id(self) -> str:
        return uuid4().hex

    @staticmethod
    def _to_cell(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    def _document_to_row(self, record_id: str, document: Document) -> list:
        return [record_id] + [self._to_cell(document.get(f)) for f in self._fields]

    def _row_to_document(self, row: list) -> Document:
        def safe_get(index: int) -> str:
            try:
                return row[index]
            except IndexError:
                return ""

        document = {"id": safe_get(0)}
        for offset, field in enumerate(self._fields, start=1):
            document[field] = safe_get(offset)
        return document

    def _row_indexes(self, all_rows: list[list], record_ids: set[str]) -> list[int]:
        # Row 1 is the header; sheet rows are 1-based
        return [
            idx for idx, row in enumerate(all_rows[1:], start=2)
            if row and row[0] in record_ids
        ]

    async def _read_all(self) -> list[Document]:
        try:
            all_rows = self._sheet().get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to read {self.name}: {e}")

        return [
            self._row_to_document(row)
            for row in all_rows
            if row and row[0]  # Skip empty rows
        ]

    async def _insert_document(self, record_id: str, document: Document) -> None:
        try:
            row = self._document_to_row(record_id, document)
            self._sheet().append_row(row, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to insert into {self.name}: {e}")

    async def _insert_documents(self, rows: list[tuple[str, Document]]) -> None:
        try:
            values = [self._document_to_row(record_id, document) for record_id, document in rows]
            self._sheet().append_rows(values, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to insert into {self.name}: {e}")

    async def _update_document(self, record_id: str, fields: Document) -> None:
        try:
            sheet = self._sheet()
            all_rows = sheet.get_all_values()

            for idx in self._row_indexes(all_rows, {record_id}):
                current = self._row_to_document(all_rows[idx - 1])
                current.update(fields)
                new_row = self._document_to_row(record_id, current)

                sheet.batch_update(
                    [{"range": f"A{idx}", "values": [new_row]}],
                    value_input_option="RAW",
                )
                return

            raise NotFoundError(f"{self.name}: no record with id {record_id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {self.name}/{record_id}: {e}")

    async def _delete_documents(self, record_ids: list[str]) -> int:
        try:
            sheet = self._sheet()
            indexes = self._row_indexes(sheet.get_all_values(), set(record_ids))
            if not indexes:
                return 0

            # One batchUpdate request; bottom-up so earlier deletes
            # don't shift the rows still to be deleted.
            requests = [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet.id,
                            "dimension": "ROWS",
                            "startIndex": idx - 1,
                            "endIndex": idx,
                        }
                    }
                }
                for idx in sorted(indexes, reverse=True)
            ]
            self._client.get_spreadsheet().batch_update({"requests": requests})
            return len(indexes)
        except Exception as e:
            raise StorageError(f"Failed to delete from {self.name}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            collection=safe_get(4) or None,
            record_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        all_rows = self._client.get_audit_sheet().get_all_values()[1:]

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception as e:
                logger.warning("audit_row_unreadable", error=str(e), event_id=row[0])
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _append_row(self, row: list) -> None:
        self._client.get_audit_sheet().append_row(row, value_input_option="RAW")

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await self._append_row(event.to_sheets_row())
            return True
        except Exception as e:
            # Audit persistence must not break the main flow
            logger.error(
                "audit_append_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [
                e for e in self._read_events()
                if e.correlation_id == correlation_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._read_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
