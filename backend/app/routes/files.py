"""Files API routes."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from starlette.requests import ClientDisconnect

from app.config import settings
from app.models.file_record import FileRecord
from app.schemas.file import FileResponse, MessageResponse
from app.services.errors import MalformedUpload, MissingFile, NotFound
from app.services.ingestion import IngestionCoordinator
from app.services.multipart_stream import MultipartFileReader

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

_UPLOAD_BODY_DOC = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "required": [settings.UPLOAD_FIELD_NAME],
                    "properties": {
                        settings.UPLOAD_FIELD_NAME: {"type": "string", "format": "binary"},
                    },
                }
            }
        },
    }
}


def get_coordinator(request: Request) -> IngestionCoordinator:
    """FastAPI dependency returning the coordinator built at startup."""
    return request.app.state.coordinator


@router.post(
    "/upload",
    response_model=FileResponse,
    status_code=201,
    openapi_extra=_UPLOAD_BODY_DOC,
)
async def upload_file(
    request: Request,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Upload a file and create a file record.

    The body is parsed as it arrives; the file part is streamed straight to
    storage and the request is abandoned as soon as it exceeds the size limit.
    """
    try:
        reader = MultipartFileReader(request.headers.get("content-type"), request.stream())
        part = await reader.find_file(settings.UPLOAD_FIELD_NAME)
        if part is None:
            raise MissingFile()
        record = await coordinator.upload(part.filename, part.content_type, part.chunks)
    except ClientDisconnect:
        logger.info("Client disconnected during upload")
        raise MalformedUpload("upload aborted by client")

    return _to_response(record)


@router.get("", response_model=list[FileResponse])
async def list_files(coordinator: IngestionCoordinator = Depends(get_coordinator)):
    """List all uploaded files, newest first."""
    records = await coordinator.list_files()
    return [_to_response(r) for r in records]


@router.get("/{file_id}", response_model=FileResponse)
async def get_file_metadata(
    file_id: str,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Get file metadata by ID."""
    record = await coordinator.get_file(_parse_file_id(file_id))
    return _to_response(record)


@router.delete("/{file_id}", response_model=MessageResponse)
async def delete_file(
    file_id: str,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Delete a file record and its stored bytes."""
    await coordinator.delete(_parse_file_id(file_id))
    return {"message": "file deleted successfully"}


def _parse_file_id(file_id: str) -> UUID:
    try:
        return UUID(file_id)
    except ValueError:
        raise NotFound(file_id)


def _to_response(record: FileRecord) -> dict:
    """Convert SQLAlchemy model to response dict."""
    return {
        "id": str(record.id),
        "filename": record.storage_name,
        "originalname": record.original_name,
        "mimetype": record.mime_type,
        "size": record.size_bytes,
        "path": record.storage_path,
        "uploadDate": record.upload_date,
    }
