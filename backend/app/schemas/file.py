"""File request/response schemas."""
from datetime import datetime
from pydantic import BaseModel


class FileResponse(BaseModel):
    """Catalog record as returned to clients; ``filename`` is the storage name."""

    id: str
    filename: str
    originalname: str
    mimetype: str
    size: int
    path: str
    uploadDate: datetime

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    message: str
