"""
Blob storage backends.

Provides abstract interface and implementations for:
- Local filesystem
- S3-compatible object storage
- Azure Blob Storage
- MongoDB GridFS
"""

from packages.shared.storage.base import (
    Blob,
    BlobStorageBackend,
    ListBlobsRequest,
    UploadRequest,
)
from packages.shared.storage.config import StorageConfig
from packages.shared.storage.factory import create_storage_backend
from packages.shared.storage.local import FilesystemStorage

__all__ = [
    "Blob",
    "BlobStorageBackend",
    "FilesystemStorage",
    "ListBlobsRequest",
    "StorageConfig",
    "UploadRequest",
    "create_storage_backend",
]
