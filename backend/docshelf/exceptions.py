class PipelineError(Exception):
    """Base exception for ingestion and delivery failures.

    Each subclass carries the HTTP status the API answers with.
    """

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class InvalidRequestError(PipelineError):
    """Raised when request parameters are missing or malformed."""

    status_code = 400
    default_message = "Invalid request"


class ConversionError(PipelineError):
    """Raised when a document cannot be rendered to PDF."""

    default_message = "Failed to convert file to PDF"


class UploadError(PipelineError):
    """Raised when an upload cannot be written to the object store."""

    default_message = "Failed to upload document"


class EmptyUploadError(UploadError):
    """Raised when an uploaded file has no content."""

    status_code = 400
    default_message = "Empty file"


class UploadTooLargeError(UploadError):
    """Raised when an uploaded file exceeds the configured size limit."""

    status_code = 413
    default_message = "File too large"


class NotFoundError(PipelineError):
    """Raised when no metadata record exists for a document id."""

    status_code = 404
    default_message = "Document not found"


class DecodeError(PipelineError):
    """Raised when stored bytes cannot be decompressed."""

    default_message = "Stored document could not be decoded"


class StorageError(PipelineError):
    """Raised when the object store cannot be reached or refuses a request."""

    default_message = "Object store request failed"
