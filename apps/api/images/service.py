"""
Image service.

Handles:
- Content sniffing and validation of uploaded payloads
- Name generation
- Persisting to and serving from the storage backend
"""

import logging
import secrets
import string
from dataclasses import dataclass

from fastapi import status

from packages.shared.exceptions import NotFoundError, ValidationError
from packages.shared.storage import BlobStorageBackend, UploadRequest
from packages.shared.storage.file_detection import detect_content_type, parse_mime

logger = logging.getLogger(__name__)


@dataclass
class StoredImage:
    """An image ready to be served."""

    name: str
    data: bytes
    content_type: str


class ImageService:
    """
    Service for storing and serving images.

    Only PNG, JPEG, GIF and SVG uploads are accepted. Names are random
    and never derived from client input.
    """

    # Image subtype -> file extension
    EXTENSIONS = {
        "png": "png",
        "jpeg": "jpg",
        "gif": "gif",
        "svg+xml": "svg",
        "svg": "svg",
    }

    NAME_ALPHABET = string.ascii_letters + string.digits
    NAME_LENGTH = 6

    def __init__(self, storage: BlobStorageBackend, base_url: str):
        """
        Initialize image service.

        Args:
            storage: Blob storage backend
            base_url: Public URL prefix, ending in ``/``
        """
        self.storage = storage
        self.base_url = base_url

    @classmethod
    def generate_name(cls) -> str:
        """Random alphanumeric base name."""
        return "".join(secrets.choice(cls.NAME_ALPHABET) for _ in range(cls.NAME_LENGTH))

    def public_url(self, name: str) -> str:
        return f"{self.base_url}images/{name}"

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def ingest(self, data: bytes) -> str:
        """
        Validate and store an uploaded image.

        Args:
            data: Raw bytes of the uploaded field

        Returns:
            Public URL of the stored image

        Raises:
            ValidationError: Not an image (400) or unsupported image type (422)
            BackendError: Storage failure
        """
        content_type = detect_content_type(data)
        parsed = parse_mime(content_type)
        if parsed is None or parsed[0] != "image":
            raise ValidationError(f"expected an image, received content type '{content_type}'")

        extension = self.EXTENSIONS.get(parsed[1])
        if extension is None:
            raise ValidationError(
                f"image type '{content_type}' is not supported",
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            )

        name = f"{self.generate_name()}.{extension}"
        await self.storage.upload(name, UploadRequest(data=data, content_type=content_type))

        logger.info(f"Stored image {name} ({len(data)} bytes, {content_type})")
        return self.public_url(name)

    # =========================================================================
    # Retrieval
    # =========================================================================

    async def fetch(self, name: str) -> StoredImage:
        """
        Load an image for serving.

        Raises:
            NotFoundError: Name is invalid or nothing is stored under it
            ValidationError: Stored payload is not an image
            BackendError: Storage failure or undecodable metadata
        """
        # Responses never echo the requested name
        if ".." in name or "\x00" in name:
            raise NotFoundError("image")

        blob = await self.storage.blob(name)
        if blob is None:
            raise NotFoundError("image")

        content_type = blob.content_type or detect_content_type(blob.data)
        parsed = parse_mime(content_type)
        if parsed is None:
            raise ValidationError("stored content type is not a valid mime type")
        if parsed[0] != "image":
            raise ValidationError("stored file is not an image")

        return StoredImage(name=name, data=blob.data, content_type=content_type)
