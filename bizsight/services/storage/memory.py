"""
In-Memory Storage Implementation

Used for tests, demos and the `memory` storage backend.
Behaves like the hosted store as far as the reactive store can tell:
identifiers are minted on insert and subscribers get a snapshot
after every write.
"""

from typing import Optional
from uuid import UUID, uuid4

from bizsight.models.audit import AuditEvent
from bizsight.services.storage.interface import (
    AuditStorageInterface,
    Document,
    NotFoundError,
    ObservableCollection,
)


class InMemoryCollection(ObservableCollection):
    """Dict-backed collection. Insertion order is preserved."""

    def __init__(self, name: str, documents: Optional[list[Document]] = None):
        super().__init__(name)
        self._documents: dict[str, Document] = {}
        for document in documents or []:
            record_id = str(document.get("id") or self._mint_id())
            self._documents[record_id] = {
                k: v for k, v in document.items() if k != "id"
            }

    def _mint_id(self) -> str:
        return uuid4().hex

    def __len__(self) -> int:
        return len(self._documents)

    async def _read_all(self) -> list[Document]:
        return [
            {"id": record_id, **fields}
            for record_id, fields in self._documents.items()
        ]

    async def _insert_document(self, record_id: str, document: Document) -> None:
        self._documents[record_id] = dict(document)

    async def _update_document(self, record_id: str, fields: Document) -> None:
        if record_id not in self._documents:
            raise NotFoundError(f"{self.name}: no record with id {record_id}")
        self._documents[record_id].update(fields)

    async def _delete_documents(self, record_ids: list[str]) -> int:
        deleted = 0
        for record_id in record_ids:
            if self._documents.pop(record_id, None) is not None:
                deleted += 1
        return deleted


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
