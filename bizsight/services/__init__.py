"""Services package."""

from bizsight.services.storage import (
    AuditStorageInterface,
    BulkReplaceError,
    ConnectionError,
    InMemoryAuditStorage,
    InMemoryCollection,
    NotFoundError,
    PartialImportError,
    RecordCollection,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "BulkReplaceError",
    "ConnectionError",
    "InMemoryAuditStorage",
    "InMemoryCollection",
    "NotFoundError",
    "PartialImportError",
    "RecordCollection",
    "StorageError",
]
