"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the backing collections.
This allows us to:
1. Swap Google Sheets for a hosted document database later
2. Use in-memory storage for testing
3. Keep the reactive store decoupled from storage implementation

A collection is a flat bag of documents (plain dicts) keyed by an identifier
the collection mints on insert. Besides CRUD it supports live subscriptions:
a subscriber receives the full current list of documents whenever it changes.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable
from uuid import UUID

import structlog

from bizsight.models.audit import AuditEvent


logger = structlog.get_logger(__name__)


Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class RecordCollection(ABC):
    """
    Abstract interface for one backing collection
    ("incomes", "expenses" or "appointments").

    Any storage implementation must implement these methods.
    """

    name: str

    @abstractmethod
    async def subscribe(
        self,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """
        Register a live subscription.

        The first snapshot (or error) is delivered before this returns.
        Later snapshots arrive after every acknowledged write.

        Returns:
            A callable that cancels the subscription
        """
        pass

    @abstractmethod
    async def fetch_all(self) -> list[Document]:
        """
        Read every document in the collection.

        Each document carries its identifier under "id".
        """
        pass

    @abstractmethod
    async def insert(self, document: Document) -> str:
        """
        Insert a new document. Any "id" in the input is ignored.

        Returns:
            The freshly minted identifier

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def insert_many(self, documents: list[Document]) -> list[str]:
        """
        Insert several documents as one committed batch.

        Subscribers see one snapshot for the whole batch.

        Returns:
            The minted identifiers, in input order
        """
        pass

    @abstractmethod
    async def update(self, record_id: str, fields: Document) -> None:
        """
        Overwrite fields of an existing document.

        Raises:
            NotFoundError: If no document has this identifier
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """
        Delete one document.

        Raises:
            NotFoundError: If no document has this identifier
        """
        pass

    @abstractmethod
    async def delete_many(self, record_ids: list[str]) -> None:
        """
        Delete several documents as one committed batch.

        Unknown identifiers are ignored.
        """
        pass


class ObservableCollection(RecordCollection):
    """
    Base class handling subscribers for concrete collections.

    Subclasses implement the raw reads and writes; this class publishes
    a fresh snapshot to every subscriber after each acknowledged write.
    """

    def __init__(self, name: str):
        self.name = name
        self._subscribers: list[tuple[SnapshotCallback, ErrorCallback]] = []

    @abstractmethod
    async def _read_all(self) -> list[Document]:
        pass

    @abstractmethod
    async def _insert_document(self, record_id: str, document: Document) -> None:
        pass

    async def _insert_documents(self, rows: list[tuple[str, Document]]) -> None:
        """Write several new documents. Backends with a batch write override this."""
        for record_id, document in rows:
            await self._insert_document(record_id, document)

    @abstractmethod
    async def _update_document(self, record_id: str, fields: Document) -> None:
        pass

    @abstractmethod
    async def _delete_documents(self, record_ids: list[str]) -> int:
        """Delete the given ids; return how many existed."""
        pass

    @abstractmethod
    def _mint_id(self) -> str:
        pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(
        self,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        entry = (on_snapshot, on_error)
        self._subscribers.append(entry)

        try:
            documents = await self._read_all()
        except Exception as e:
            self._deliver(on_error, e)
        else:
            self._deliver(on_snapshot, [dict(doc) for doc in documents])

        def unsubscribe() -> None:
            self._subscribers = [s for s in self._subscribers if s is not entry]

        return unsubscribe

    async def fetch_all(self) -> list[Document]:
        return [dict(doc) for doc in await self._read_all()]

    async def insert(self, document: Document) -> str:
        record_id = self._mint_id()
        fields = {k: v for k, v in document.items() if k != "id"}
        await self._insert_document(record_id, fields)
        await self._publish()
        return record_id

    async def insert_many(self, documents: list[Document]) -> list[str]:
        rows = [
            (self._mint_id(), {k: v for k, v in document.items() if k != "id"})
            for document in documents
        ]
        if not rows:
            return []
        await self._insert_documents(rows)
        await self._publish()
        return [record_id for record_id, _ in rows]

    async def update(self, record_id: str, fields: Document) -> None:
        fields = {k: v for k, v in fields.items() if k != "id"}
        await self._update_document(record_id, fields)
        await self._publish()

    async def delete(self, record_id: str) -> None:
        if await self._delete_documents([record_id]) == 0:
            raise NotFoundError(f"{self.name}: no record with id {record_id}")
        await self._publish()

    async def delete_many(self, record_ids: list[str]) -> None:
        if not record_ids:
            return
        await self._delete_documents(list(record_ids))
        await self._publish()

    async def _publish(self) -> None:
        """Deliver the current documents to every subscriber."""
        if not self._subscribers:
            return

        subscribers = list(self._subscribers)
        try:
            documents = await self._read_all()
        except Exception as e:
            for _, on_error in subscribers:
                self._deliver(on_error, e)
            return

        for on_snapshot, _ in subscribers:
            self._deliver(on_snapshot, [dict(doc) for doc in documents])

    def _deliver(self, callback: Callable[[Any], None], payload: Any) -> None:
        # Subscribers run after the write is committed; their errors stay here.
        try:
            callback(payload)
        except Exception:
            logger.exception("subscriber_failed", collection=self.name)


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events of one operation (e.g. one bulk import).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
