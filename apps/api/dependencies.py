"""
FastAPI dependencies for settings, storage and services.

Both the settings and the storage backend are created once by
``create_app`` and kept on ``app.state``.
"""

import hmac
from typing import Annotated

from fastapi import Depends, Header, Request

from apps.api.config import Settings
from apps.api.images.service import ImageService
from packages.shared.exceptions import AuthError
from packages.shared.storage import BlobStorageBackend


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> BlobStorageBackend:
    return request.app.state.storage


def get_image_service(
    settings: Annotated[Settings, Depends(get_app_settings)],
    storage: Annotated[BlobStorageBackend, Depends(get_storage)],
) -> ImageService:
    """Get image service with dependencies."""
    return ImageService(storage, settings.base_url)


def require_uploader_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """
    Check the ``Authorization`` header against the uploader key.

    An unset uploader key rejects every request.

    Raises:
        AuthError: Header missing or wrong
    """
    expected = settings.uploader_key
    if not expected or authorization is None:
        raise AuthError()

    if not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise AuthError()
