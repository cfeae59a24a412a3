"""Factory for creating storage backends based on configuration."""

import logging

from packages.shared.storage.base import BlobStorageBackend
from packages.shared.storage.config import (
    AzureStorageConfig,
    FilesystemStorageConfig,
    GridfsStorageConfig,
    S3StorageConfig,
    StorageConfig,
)

logger = logging.getLogger(__name__)


def create_storage_backend(config: StorageConfig) -> BlobStorageBackend:
    """
    Create the storage backend selected by configuration.

    The backend is chosen once here; callers only see the common interface.
    SDK imports are deferred so unused backends are never loaded.

    Args:
        config: One of the storage config variants

    Returns:
        Configured (not yet initialized) BlobStorageBackend instance
    """
    if isinstance(config, S3StorageConfig):
        from packages.shared.storage.s3 import S3Storage

        backend: BlobStorageBackend = S3Storage(config)
    elif isinstance(config, AzureStorageConfig):
        from packages.shared.storage.azure import AzureBlobStorage

        backend = AzureBlobStorage(config)
    elif isinstance(config, GridfsStorageConfig):
        from packages.shared.storage.gridfs import GridfsStorage

        backend = GridfsStorage.from_config(config)
    elif isinstance(config, FilesystemStorageConfig):
        from packages.shared.storage.local import FilesystemStorage

        backend = FilesystemStorage(base_path=config.directory)
    else:
        raise ValueError(f"unknown storage service: {getattr(config, 'service', config)!r}")

    logger.info(f"Configured {backend.backend_name} storage backend")
    return backend
