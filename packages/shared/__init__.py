"""Shared utilities package."""

from packages.shared.exceptions import (
    AppException,
    AuthError,
    BackendError,
    DecodeError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppException",
    "AuthError",
    "BackendError",
    "DecodeError",
    "NotFoundError",
    "ValidationError",
]
