"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the backing
collections, plus the replace-collection primitive used by bulk imports.
Ships an in-memory backend and Google Sheets; designed to be swappable.
"""

from bizsight.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Document,
    NotFoundError,
    ObservableCollection,
    RecordCollection,
    StorageError,
)
from bizsight.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryCollection,
)
from bizsight.services.storage.replace import (
    BulkReplaceError,
    PartialImportError,
    replace_all,
    replace_kinds,
    to_document,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "Document",
    "ObservableCollection",
    "RecordCollection",
    # Exceptions
    "BulkReplaceError",
    "ConnectionError",
    "NotFoundError",
    "PartialImportError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryCollection",
    # Bulk replace
    "replace_all",
    "replace_kinds",
    "to_document",
]
