"""
Replace-Collection Primitive

The only bulk mutation in the system: delete every document of a kind,
then insert a replacement set, each with a freshly minted identifier.

IMPORTANT: This is NOT atomic.
- A failure between the delete and insert phases leaves the kind empty
  or half-filled.
- A multi-kind replace runs one kind at a time (incomes, expenses,
  appointments) with a completion marker per kind. A failure after at
  least one kind completed is a PartialImportError, which tells the
  caller exactly which kinds were replaced, which failed and which
  were never touched.

There is no automatic retry and no rollback. Retrying blindly could
double-insert; rolling back needs the data we just deleted.
"""

from typing import Mapping, Sequence

import structlog
from pydantic import BaseModel

from bizsight.models.records import (
    ALL_KINDS,
    RecordKind,
    ReplaceProgress,
    ReplaceStatus,
)
from bizsight.services.storage.interface import (
    Document,
    RecordCollection,
    StorageError,
)


logger = structlog.get_logger(__name__)


def to_document(record: BaseModel) -> Document:
    """Model -> storable document (datetimes stay native, no id)."""
    return record.model_dump(exclude={"id"})


async def replace_all(
    collection: RecordCollection,
    records: Sequence[BaseModel],
) -> list[str]:
    """
    Replace the whole content of a collection.

    Reads every existing identifier, deletes them in one batch,
    then inserts every record as a new document in a second batch.

    Returns:
        Identifiers minted for the inserted records, in input order
    """
    existing = await collection.fetch_all()
    existing_ids = [doc["id"] for doc in existing]

    await collection.delete_many(existing_ids)
    logger.info(
        "collection_cleared",
        collection=collection.name,
        deleted=len(existing_ids),
    )

    new_ids = await collection.insert_many([to_document(record) for record in records])

    logger.info(
        "collection_replaced",
        collection=collection.name,
        inserted=len(new_ids),
    )
    return new_ids


async def replace_kinds(
    collections: Mapping[RecordKind, RecordCollection],
    records_by_kind: Mapping[RecordKind, Sequence[BaseModel]],
) -> ReplaceProgress:
    """
    Replace several kinds, one after another, in the fixed kind order.

    Raises:
        PartialImportError: a kind failed after at least one other kind
            had already been replaced
        BulkReplaceError: the first kind failed
    """
    kinds = [kind for kind in ALL_KINDS if kind in records_by_kind]
    progress = ReplaceProgress.start(kinds)

    for kind in kinds:
        try:
            new_ids = await replace_all(collections[kind], records_by_kind[kind])
        except Exception as e:
            progress.statuses[kind] = ReplaceStatus.FAILED
            logger.error(
                "replace_failed",
                collection=kind.collection_name,
                replaced=[k.collection_name for k in progress.replaced_kinds],
                untouched=[k.collection_name for k in progress.untouched_kinds],
                error=str(e),
            )
            if progress.replaced_kinds:
                raise PartialImportError(progress, e) from e
            raise BulkReplaceError(progress, e) from e

        progress.statuses[kind] = ReplaceStatus.REPLACED
        progress.inserted[kind] = len(new_ids)

    return progress


class BulkReplaceError(StorageError):
    """
    A bulk replace failed before any kind was fully replaced.

    The failed kind itself may have been emptied.
    """

    def __init__(self, progress: ReplaceProgress, cause: Exception):
        self.progress = progress
        self.cause = cause
        super().__init__(self._message())

    def _message(self) -> str:
        failed = self.progress.failed_kind
        name = failed.collection_name if failed else "unknown"
        return f"Replacing {name} failed: {self.cause}"


class PartialImportError(BulkReplaceError):
    """
    A multi-kind replace stopped partway.

    Some kinds hold the imported data, one failed, the rest still hold
    their old data. The caller must tell the user which is which.
    """

    def _message(self) -> str:
        replaced = ", ".join(k.collection_name for k in self.progress.replaced_kinds)
        untouched = ", ".join(k.collection_name for k in self.progress.untouched_kinds)
        failed = self.progress.failed_kind
        return (
            f"Import partially applied. Replaced: {replaced or 'none'}; "
            f"failed: {failed.collection_name if failed else 'unknown'} ({self.cause}); "
            f"unchanged: {untouched or 'none'}"
        )
