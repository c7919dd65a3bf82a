"""Error taxonomy shared by the services and the HTTP layer.

Every error carries an HTTP status and a short machine-readable code so
handlers can map it without inspecting messages.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "Internal server error"


class FileHostError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# --- client errors ---
class ValidationError(FileHostError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class EmptyUploadError(ValidationError):
    code = "empty_upload"

    def __init__(self, message: str = "No files were uploaded") -> None:
        super().__init__(message)


class TooManyFilesError(ValidationError):
    code = "too_many_files"

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Too many files: {count} uploaded, at most {limit} allowed")
        self.count = count
        self.limit = limit


class FileTooLargeError(ValidationError):
    status_code = 413
    code = "file_too_large"

    def __init__(self, filename: str, size: int, limit: int) -> None:
        super().__init__(f"File '{filename}' is too large: {size} bytes, limit is {limit} bytes")
        self.filename = filename
        self.size = size
        self.limit = limit


class UnsupportedFileTypeError(ValidationError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    code = "unsupported_file_type"

    def __init__(self, filename: str, mime_type: str) -> None:
        super().__init__(
            f"File '{filename}' ({mime_type or 'unknown type'}) is not allowed. "
            "Allowed types: images (jpeg, jpg, png, gif) and documents (pdf, txt, doc, docx)"
        )
        self.filename = filename
        self.mime_type = mime_type


class NotFoundError(FileHostError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ContentMissingError(NotFoundError):
    """The metadata record exists but the stored bytes are gone."""

    code = "content_missing"


class ConflictError(FileHostError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class AuthError(FileHostError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


# --- server errors ---
class StorageError(FileHostError):
    code = "storage_error"


class IntegrityError(FileHostError):
    code = "integrity_error"


async def file_host_error_handler(request: Request, exc: FileHostError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            type(exc).__name__,
            exc.message,
            exc_info=exc,
        )
        detail = GENERIC_SERVER_ERROR
    else:
        detail = exc.message
    return JSONResponse(status_code=exc.status_code, content={"detail": detail, "code": exc.code})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": GENERIC_SERVER_ERROR, "code": "error"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FileHostError, file_host_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
