"""Upload service error types.

Client input errors (MissingFile, InvalidFileName, UnsupportedType, TooLarge)
and lookup misses (NotFound) carry a stable message that is safe to return
to the caller.
Infrastructure errors (IOFailure, PersistenceFailure) keep the underlying
cause for logs and always surface to the caller as a generic server error.
"""


class UploadServiceError(Exception):
    """Base exception for upload, catalog and storage operations."""

    status_code: int = 500
    message: str = "server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MissingFile(UploadServiceError):
    """Upload request carried no file."""

    status_code = 400
    message = "please upload a file"


class UnsupportedType(UploadServiceError):
    """Declared content type is not in the allow-list."""

    status_code = 415

    def __init__(self, mime_type: str | None, allowed: frozenset[str]):
        self.mime_type = mime_type
        self.allowed = allowed
        labels = ", ".join(sorted(allowed)) or "none"
        super().__init__(f"unsupported file type; allowed types: {labels}")


class TooLarge(UploadServiceError):
    """Upload exceeded the configured byte ceiling."""

    status_code = 413

    def __init__(self, max_size_bytes: int):
        self.max_size_bytes = max_size_bytes
        super().__init__(f"file exceeds the maximum size of {max_size_bytes} bytes")


class InvalidFileName(UploadServiceError):
    """Client-supplied file name cannot be stored in the catalog."""

    status_code = 400

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"invalid file name: {reason}")


class NotFound(UploadServiceError):
    """No catalog record for the given id."""

    status_code = 404
    message = "file not found"

    def __init__(self, file_id: object = None):
        self.file_id = file_id
        super().__init__()


class IOFailure(UploadServiceError):
    """Blob store could not write the upload."""

    def __init__(self, storage_name: str, reason: str):
        self.storage_name = storage_name
        self.reason = reason
        super().__init__()

    def __str__(self) -> str:
        return f"I/O failure for blob {self.storage_name}: {self.reason}"


class PersistenceFailure(UploadServiceError):
    """Catalog database was unreachable or rejected the operation."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__()

    def __str__(self) -> str:
        return f"catalog {self.operation} failed: {self.reason}"


class MalformedUpload(UploadServiceError):
    """Request body is not a well-formed multipart/form-data upload."""

    status_code = 400
    message = "malformed upload body"
