"""Blob store: uploaded file bytes in a single flat content directory."""
import asyncio
import logging
import os
import time
from pathlib import Path
from typing import AsyncIterable

import aiofiles
import aiofiles.os

from app.services.errors import IOFailure

logger = logging.getLogger(__name__)

PARTIAL_PREFIX = "."
PARTIAL_SUFFIX = ".part"


class BlobStore:
    """Handles blob write/delete on local disk.

    Writes go to ``.<name>.part`` and are renamed into place only once every
    byte is flushed, so a reader never sees a partial file under its final
    name.
    """

    def __init__(self, base_path: str | Path, public_prefix: str = "/uploads"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_prefix = "/" + public_prefix.strip("/")

    def path_for(self, storage_name: str) -> Path:
        if not storage_name or Path(storage_name).name != storage_name:
            raise ValueError(f"Invalid storage name: {storage_name!r}")
        return self.base_path / storage_name

    def public_path(self, storage_name: str) -> str:
        """Retrieval path the blob is served under, e.g. /uploads/<name>."""
        return f"{self.public_prefix}/{storage_name}"

    def _partial_path(self, storage_name: str) -> Path:
        return self.base_path / f"{PARTIAL_PREFIX}{storage_name}{PARTIAL_SUFFIX}"

    async def write(self, storage_name: str, chunks: AsyncIterable[bytes]) -> int:
        """Stream chunks to disk under ``storage_name``. Returns bytes written.

        Any exception raised by ``chunks`` (size limit, client disconnect) or by
        the task being cancelled removes the partial file and propagates
        unchanged; OS-level errors (and names the OS rejects) are raised as
        IOFailure.
        """
        final_path = self.path_for(storage_name)
        partial_path = self._partial_path(storage_name)
        written = 0
        try:
            async with aiofiles.open(partial_path, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
                    written += len(chunk)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(partial_path, final_path)
        except (OSError, ValueError) as e:
            self._discard_partial(partial_path)
            logger.error("Blob write failed for %s after %d bytes: %s", storage_name, written, e)
            raise IOFailure(storage_name, str(e)) from e
        except BaseException:
            self._discard_partial(partial_path)
            raise

        logger.info("Stored blob %s (%d bytes)", storage_name, written)
        return written

    def _discard_partial(self, partial_path: Path) -> None:
        # No awaits here: runs while a cancellation may be unwinding.
        try:
            os.remove(partial_path)
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            logger.warning("Could not remove partial blob %s: %s", partial_path, e)

    async def delete(self, storage_name: str) -> bool:
        """Delete a blob. Missing blobs count as deleted.

        Never raises for I/O errors; returns False so the caller can flag the
        blob as an orphan.
        """
        try:
            await aiofiles.os.remove(self.path_for(storage_name))
        except FileNotFoundError:
            logger.debug("Blob %s already absent", storage_name)
            return True
        except (OSError, ValueError) as e:
            logger.error("Failed to delete blob %s: %s", storage_name, e)
            return False
        logger.info("Deleted blob %s", storage_name)
        return True

    async def exists(self, storage_name: str) -> bool:
        return await aiofiles.os.path.isfile(self.path_for(storage_name))

    async def size_of(self, storage_name: str) -> int | None:
        """Byte size of a stored blob, or None when it does not exist."""
        try:
            return await aiofiles.os.path.getsize(self.path_for(storage_name))
        except FileNotFoundError:
            return None

    async def _age_seconds(self, name: str) -> float | None:
        try:
            stat = await aiofiles.os.stat(self.base_path / name)
        except FileNotFoundError:
            return None
        return time.time() - stat.st_mtime

    async def list_names(self, min_age_seconds: float = 0) -> list[str]:
        """Names of fully written blobs (partial files excluded).

        With ``min_age_seconds`` only blobs not modified for at least that long
        are listed.
        """
        names = []
        for n in await aiofiles.os.listdir(self.base_path):
            if n.startswith(PARTIAL_PREFIX) or not (self.base_path / n).is_file():
                continue
            if min_age_seconds > 0:
                age = await self._age_seconds(n)
                if age is None or age < min_age_seconds:
                    continue
            names.append(n)
        return sorted(names)

    async def purge_partials(self, min_age_seconds: float = 0) -> int:
        """Remove leftover ``.part`` files from interrupted writes.

        Partials younger than ``min_age_seconds`` may belong to a write still
        in flight in another worker and are left alone.
        """
        removed = 0
        for name in await aiofiles.os.listdir(self.base_path):
            if not (name.startswith(PARTIAL_PREFIX) and name.endswith(PARTIAL_SUFFIX)):
                continue
            if min_age_seconds > 0:
                age = await self._age_seconds(name)
                if age is None or age < min_age_seconds:
                    continue
            try:
                await aiofiles.os.remove(self.base_path / name)
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove stale partial blob %s: %s", name, e)
        if removed:
            logger.info("Removed %d stale partial blob(s)", removed)
        return removed
