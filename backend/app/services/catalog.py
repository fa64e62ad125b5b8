"""File catalog: durable metadata table for uploaded blobs.

Each call opens its own short-lived session so concurrent requests never
share a transaction. Per-record atomicity is left to the database; there is
no cross-record locking.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.file_record import FileRecord
from app.services.errors import NotFound, PersistenceFailure

logger = logging.getLogger(__name__)


class FileCatalog:
    """Insert, list, find and delete FileRecord rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert(self, record: FileRecord) -> FileRecord:
        """Persist a new record, assigning its id. Raises PersistenceFailure."""
        if record.id is None:
            record.id = uuid.uuid4()
        if record.upload_date is None:
            record.upload_date = datetime.now(timezone.utc)
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Catalog insert failed for %s: %s", record.storage_name, e)
            raise PersistenceFailure("insert", str(e)) from e
        return record

    async def list(self) -> list[FileRecord]:
        """All records, newest upload first."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(FileRecord).order_by(desc(FileRecord.upload_date))
                )
                return list(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            logger.error("Catalog list failed: %s", e)
            raise PersistenceFailure("list", str(e)) from e

    async def find_by_id(self, file_id: uuid.UUID) -> FileRecord:
        try:
            async with self._session_factory() as session:
                record = await session.get(FileRecord, file_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Catalog lookup failed for %s: %s", file_id, e)
            raise PersistenceFailure("find", str(e)) from e
        if record is None:
            raise NotFound(file_id)
        return record

    async def delete_by_id(self, file_id: uuid.UUID) -> None:
        """Remove one record. Raises NotFound if no row was deleted."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(FileRecord).where(FileRecord.id == file_id)
                )
                deleted = result.rowcount
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Catalog delete failed for %s: %s", file_id, e)
            raise PersistenceFailure("delete", str(e)) from e
        if deleted == 0:
            raise NotFound(file_id)

    async def storage_names(self) -> set[str]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(FileRecord.storage_name))
                return set(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            logger.error("Catalog scan failed: %s", e)
            raise PersistenceFailure("scan", str(e)) from e
