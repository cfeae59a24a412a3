"""Abstract base class for blob storage backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath


@dataclass
class Blob:
    """A stored payload with its metadata."""

    name: str
    data: bytes
    content_type: str | None = None
    created_at: datetime | None = None
    backend: str | None = None
    size: int = field(init=False)

    def __post_init__(self) -> None:
        self.size = len(self.data)


@dataclass
class UploadRequest:
    """Payload and metadata for an upload."""

    data: bytes
    content_type: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ListBlobsRequest:
    """
    Optional filters for listing blobs.

    Not every backend honours every field; see each backend's ``blobs()``.
    """

    extensions: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    include_dirs: bool = False

    def is_excluded(self, name: str) -> bool:
        """Check if a blob name is filtered out by this request."""
        if name in self.exclude:
            return True

        if self.extensions:
            suffix = PurePosixPath(name).suffix.lstrip(".").lower()
            wanted = {ext.lstrip(".").lower() for ext in self.extensions}
            return suffix not in wanted

        return False


class BlobStorageBackend(ABC):
    """
    Abstract base for blob storage backends.

    Provides one contract over the local filesystem, S3-compatible
    object storage, Azure Blob Storage and MongoDB GridFS.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the name of this backend (e.g., 'filesystem', 's3')."""
        pass

    @abstractmethod
    async def init(self) -> None:
        """
        Prepare the backend for use.

        Raises:
            BackendError: If the backend is unreachable
        """
        pass

    @abstractmethod
    async def open(self, key: str) -> bytes | None:
        """
        Read a blob's payload.

        Args:
            key: Name the blob was uploaded under

        Returns:
            The full payload, or None if the key doesn't exist
        """
        pass

    @abstractmethod
    async def blob(self, key: str) -> Blob | None:
        """
        Read a blob's payload together with its metadata.

        Args:
            key: Name the blob was uploaded under

        Returns:
            Blob, or None if the key doesn't exist
        """
        pass

    @abstractmethod
    async def blobs(
        self,
        prefix: str | None = None,
        request: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """
        List stored blobs.

        Args:
            prefix: Only list blobs under this key prefix
            request: Additional filters

        Returns:
            List of blobs
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete a blob. Deleting a key that doesn't exist succeeds.

        Args:
            key: Name the blob was uploaded under
        """
        pass

    async def exists(self, key: str) -> bool:
        """
        Check if a blob exists.

        Args:
            key: Name to check

        Returns:
            True if ``open(key)`` would return a payload
        """
        return await self.open(key) is not None

    @abstractmethod
    async def upload(self, key: str, request: UploadRequest) -> None:
        """
        Create or overwrite a blob.

        Args:
            key: Name to store the blob under
            request: Payload and content type
        """
        pass

    async def close(self) -> None:
        """Release clients and connection pools."""
        return None
