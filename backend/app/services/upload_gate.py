"""Content-type and size gate applied before any upload bytes are persisted."""
import logging
from typing import AsyncIterator

from app.config import UploadPolicy
from app.services.errors import TooLarge, UnsupportedType

logger = logging.getLogger(__name__)


class UploadGate:
    """Validates declared content types and bounds the accepted byte stream.

    The gate performs no I/O. ``limit()`` is what makes the size ceiling hold
    against the network: it raises before handing over the chunk that would
    cross the limit, so the caller stops reading the request there.
    """

    def __init__(self, policy: UploadPolicy):
        self.policy = policy

    def check_type(self, mime_type: str | None) -> str:
        """Return the normalized type (parameters stripped, lowercased) if allowed."""
        normalized = (mime_type or "").split(";")[0].strip().lower()
        if normalized not in self.policy.allowed_mime_types:
            logger.info("Rejected upload with content type %r", mime_type)
            raise UnsupportedType(mime_type, self.policy.allowed_mime_types)
        return normalized

    def check_size(self, size: int) -> None:
        if size > self.policy.max_size_bytes:
            raise TooLarge(self.policy.max_size_bytes)

    def validate(self, mime_type: str | None, size: int | None = None) -> None:
        """Raise UnsupportedType or TooLarge; return None when accepted."""
        self.check_type(mime_type)
        if size is not None:
            self.check_size(size)

    async def limit(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Yield ``chunks`` unchanged until the running total would exceed the ceiling."""
        total = 0
        async for chunk in chunks:
            total += len(chunk)
            if total > self.policy.max_size_bytes:
                logger.info(
                    "Aborting upload stream after %d bytes (limit %d)",
                    total, self.policy.max_size_bytes,
                )
                raise TooLarge(self.policy.max_size_bytes)
            yield chunk
