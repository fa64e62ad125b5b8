"""FileRecord model - uploaded file metadata (actual bytes live in the blob store)."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, BigInteger, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates
from app.models.base import Base

MAX_ORIGINAL_NAME_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(Base):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    storage_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    original_name: Mapped[str] = mapped_column(String(MAX_ORIGINAL_NAME_LENGTH), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    upload_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    @validates("storage_name", "original_name", "mime_type", "storage_path")
    def _validate_required_text(self, key: str, value: str) -> str:
        if not value or not value.strip():
            raise ValueError(f"{key} must be a non-empty string")
        return value

    @validates("size_bytes")
    def _validate_size(self, key: str, value: int) -> int:
        if value is None or value < 0:
            raise ValueError("size_bytes must be a non-negative integer")
        return value

    def __repr__(self) -> str:
        return f"<FileRecord id={self.id} storage_name={self.storage_name!r} size={self.size_bytes}>"
