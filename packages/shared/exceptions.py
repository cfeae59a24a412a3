"""Shared exception classes and handlers."""

import logging
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "internal server error, please try again later"


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.detail = detail or {}
        super().__init__(self.message)


class AuthError(AppException):
    """Missing or wrong uploader key."""

    def __init__(self, message: str = "invalid uploader key received") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(
        self,
        resource: str,
        identifier: str | None = None,
    ) -> None:
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status_code,
            detail={"errors": errors} if errors else None,
        )


class PayloadTooLargeError(AppException):
    """Uploaded field exceeds the configured size limit."""

    def __init__(self, limit_bytes: int) -> None:
        super().__init__(
            message=f"field exceeds maximum size of {limit_bytes // (1024 * 1024)}MB",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"limit": limit_bytes},
        )


class BackendError(AppException):
    """I/O or network failure inside a storage backend.

    The message carries backend details for the logs; clients only ever see
    a generic message.
    """

    def __init__(
        self,
        message: str = "storage backend operation failed",
        backend: str | None = None,
    ) -> None:
        self.backend = backend
        if backend:
            message = f"[{backend}] {message}"
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


class DecodeError(BackendError):
    """Stored metadata could not be decoded."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        backend: str | None = None,
    ) -> None:
        self.field = field
        super().__init__(message, backend=backend)


class MissingFieldError(DecodeError):
    """A required metadata field is absent."""

    def __init__(self, field: str, backend: str | None = None) -> None:
        super().__init__(f"key [{field}] was not found", field=field, backend=backend)


class FieldTypeError(DecodeError):
    """A metadata field has an unexpected type."""

    def __init__(
        self,
        field: str,
        expected: str,
        actual: str,
        backend: str | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"expected type '{expected}', but the actual type for key [{field}] is '{actual}'",
            field=field,
            backend=backend,
        )


class MalformedDocumentError(DecodeError):
    """The stored document itself is not valid BSON."""


async def app_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle AppException and return JSON response."""
    if isinstance(exc, AppException) and exc.status_code < 500:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "message": exc.message,
                "detail": exc.detail,
            },
        )

    logger.error(
        f"{request.method} {request.url.path} failed: {exc}",
        exc_info=exc,
    )
    status_code = getattr(exc, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(
        status_code=status_code,
        content={"message": GENERIC_SERVER_ERROR, "detail": {}},
    )
