"""Ingestion coordinator: upload and delete workflows across gate, blob store and catalog.

Upload:  RECEIVED -> VALIDATED -> STORED -> CATALOGED -> COMPLETE (or FAILED)
Delete:  catalog lookup -> catalog delete -> blob delete (best-effort)

A catalog row is only ever inserted after its blob is fully written. When the
insert fails the blob is removed again; if that cleanup also fails the blob is
logged as an orphan and left for reconciliation.
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator

from app.models.file_record import MAX_ORIGINAL_NAME_LENGTH, FileRecord
from app.services.catalog import FileCatalog
from app.services.errors import (
    InvalidFileName,
    MissingFile,
    PersistenceFailure,
    UploadServiceError,
)
from app.services.file_storage import BlobStore
from app.services.naming import generate_storage_name
from app.services.upload_gate import UploadGate

logger = logging.getLogger(__name__)


class UploadState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    STORED = "stored"
    CATALOGED = "cataloged"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ReconcileReport:
    """Outcome of comparing blob store contents against catalog rows."""

    partials_removed: int = 0
    orphans: list[str] = field(default_factory=list)
    orphans_removed: int = 0
    dangling: list[str] = field(default_factory=list)


class IngestionCoordinator:
    """Runs uploads and deletions as single logical operations."""

    def __init__(self, gate: UploadGate, blob_store: BlobStore, catalog: FileCatalog):
        self.gate = gate
        self.blob_store = blob_store
        self.catalog = catalog

    async def upload(
        self,
        original_name: str | None,
        mime_type: str | None,
        chunks: AsyncIterator[bytes] | None,
    ) -> FileRecord:
        """Validate, store and catalog one upload. Returns the created record."""
        state = UploadState.RECEIVED
        if chunks is None or not original_name or not original_name.strip():
            logger.info("Upload rejected: no file attached")
            raise MissingFile()
        if len(original_name) > MAX_ORIGINAL_NAME_LENGTH:
            logger.info("Upload rejected: file name of %d characters", len(original_name))
            raise InvalidFileName(f"longer than {MAX_ORIGINAL_NAME_LENGTH} characters")
        if "\x00" in original_name:
            logger.info("Upload rejected: NUL character in file name %r", original_name)
            raise InvalidFileName("contains a NUL character")

        try:
            mime_type = self.gate.check_type(mime_type)
            bounded = self.gate.limit(chunks)
            state = UploadState.VALIDATED

            storage_name = generate_storage_name(original_name)
            size = await self.blob_store.write(storage_name, bounded)
            state = UploadState.STORED
        except UploadServiceError as e:
            logger.warning(
                "Upload of %r %s in state %s: %s",
                original_name, UploadState.FAILED.value, state.value, e,
            )
            raise
        except BaseException as e:
            logger.warning(
                "Upload of %r aborted in state %s: %s", original_name, state.value, type(e).__name__
            )
            raise

        record = FileRecord(
            storage_name=storage_name,
            original_name=original_name,
            mime_type=mime_type,
            size_bytes=size,
            storage_path=self.blob_store.public_path(storage_name),
        )
        try:
            record = await self.catalog.insert(record)
        except PersistenceFailure as e:
            logger.error(
                "Upload of %r %s in state %s, removing blob %s: %s",
                original_name, UploadState.FAILED.value, state.value, storage_name, e,
            )
            if not await self.blob_store.delete(storage_name):
                logger.error(
                    "orphan blob %s left in %s after catalog insert failure; needs reconciliation",
                    storage_name, self.blob_store.base_path,
                )
            raise
        state = UploadState.CATALOGED

        logger.info(
            "Upload %s after %s: %s stored as %s (%d bytes, %s)",
            UploadState.COMPLETE.value, state.value, original_name, storage_name, size, mime_type,
        )
        return record

    async def list_files(self) -> list[FileRecord]:
        return await self.catalog.list()

    async def get_file(self, file_id: uuid.UUID) -> FileRecord:
        return await self.catalog.find_by_id(file_id)

    async def delete(self, file_id: uuid.UUID) -> FileRecord:
        """Remove the catalog record, then its blob. Returns the removed record.

        The catalog goes first so listings stop showing the file before the
        blob disappears. A failed blob delete is logged and does not fail the
        operation.
        """
        record = await self.catalog.find_by_id(file_id)
        await self.catalog.delete_by_id(file_id)
        logger.info("Deleted catalog record %s (%s)", file_id, record.storage_name)

        if not await self.blob_store.delete(record.storage_name):
            logger.error(
                "orphan blob %s left after deleting record %s; needs reconciliation",
                record.storage_name, file_id,
            )
        return record

    async def reconcile(
        self, remove_orphans: bool = False, grace_seconds: float = 0
    ) -> ReconcileReport:
        """Compare blob store and catalog.

        Stale partial writes are always removed. Orphan blobs (no catalog row)
        are reported and only removed when ``remove_orphans`` is set. Dangling
        rows (blob missing) are reported, never deleted.

        Files touched within the last ``grace_seconds`` may belong to an upload
        still in progress in another worker: they are neither purged nor
        counted as orphans.
        """
        report = ReconcileReport()
        report.partials_removed = await self.blob_store.purge_partials(grace_seconds)

        # Blobs are listed before the catalog is read so a blob cataloged in
        # between is never taken for an orphan.
        settled = set(await self.blob_store.list_names(grace_seconds))
        cataloged = await self.catalog.storage_names()
        stored = set(await self.blob_store.list_names())

        report.orphans = sorted(settled - cataloged)
        report.dangling = sorted(cataloged - stored)

        for name in report.orphans:
            logger.warning("orphan blob %s has no catalog record", name)
            if remove_orphans and await self.blob_store.delete(name):
                report.orphans_removed += 1
        for name in report.dangling:
            logger.error("Catalog record for %s points at a missing blob", name)

        logger.info(
            "Reconciliation: %d partial(s) removed, %d orphan(s) (%d removed), %d dangling",
            report.partials_removed, len(report.orphans), report.orphans_removed, len(report.dangling),
        )
        return report
