"""Azure Blob Storage backend."""

import logging
import time
from typing import Any

from azure.core.credentials import AccessToken, AzureNamedKeyCredential, AzureSasCredential
from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from packages.shared.exceptions import BackendError
from packages.shared.storage.base import (
    Blob,
    BlobStorageBackend,
    ListBlobsRequest,
    UploadRequest,
)
from packages.shared.storage.config import (
    AccessKeyCredential,
    AzureStorageConfig,
    BearerCredential,
    SasTokenCredential,
)

logger = logging.getLogger(__name__)

# Content type the service records for blobs uploaded without one
SERVICE_DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StaticTokenCredential:
    """Async token credential that always hands out the same bearer token."""

    # Pre-issued tokens carry no expiry we can read; report one a day out
    LIFETIME_SECONDS = 24 * 60 * 60

    def __init__(self, token: str):
        self._token = token

    async def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        return AccessToken(self._token, int(time.time()) + self.LIFETIME_SECONDS)

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> "StaticTokenCredential":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def build_credential(config: AzureStorageConfig) -> Any:
    """Translate the configured credential into an azure-core credential."""
    credential = config.credential
    if isinstance(credential, AccessKeyCredential):
        return AzureNamedKeyCredential(credential.account, credential.access_key)
    if isinstance(credential, SasTokenCredential):
        return AzureSasCredential(credential.token)
    if isinstance(credential, BearerCredential):
        return StaticTokenCredential(credential.token)
    return None


class AzureBlobStorage(BlobStorageBackend):
    """
    Azure Blob Storage backend.

    All blobs live in a single container; keys are blob names.
    """

    def __init__(self, config: AzureStorageConfig, service_client: Any | None = None):
        """
        Initialize Azure storage.

        Args:
            config: Credential, cloud location and container
            service_client: Blob service client (built from config if not given)
        """
        self.config = config
        self._service = service_client or BlobServiceClient(
            account_url=config.account_url,
            credential=build_credential(config),
        )
        self._container = self._service.get_container_client(config.container)

    @property
    def backend_name(self) -> str:
        return "azure"

    def _backend_error(self, action: str, key: str, exc: Exception) -> BackendError:
        return BackendError(f"unable to {action} [{key}]: {exc}", backend=self.backend_name)

    @staticmethod
    def _blob_name(key: str) -> str:
        return key.removeprefix("./").lstrip("/")

    async def init(self) -> None:
        """Verify the container is reachable, creating it if it doesn't exist."""
        try:
            if await self._container.exists():
                logger.info(f"Using Azure container {self.config.container}")
                return

            logger.info(f"Container {self.config.container} doesn't exist, creating it")
            await self._container.create_container()
        except ResourceExistsError:
            # created concurrently by another instance
            return
        except AzureError as e:
            raise self._backend_error("initialize container", self.config.container, e) from e

    async def _download(self, key: str) -> Any | None:
        blob_client = self._container.get_blob_client(self._blob_name(key))
        try:
            return await blob_client.download_blob()
        except ResourceNotFoundError:
            return None

    async def open(self, key: str) -> bytes | None:
        try:
            downloader = await self._download(key)
            if downloader is None:
                return None
            return await downloader.readall()
        except AzureError as e:
            raise self._backend_error("open", key, e) from e

    async def _fetch_blob(self, key: str) -> Blob | None:
        downloader = await self._download(key)
        if downloader is None:
            return None

        content = await downloader.readall()
        properties = downloader.properties
        content_settings = getattr(properties, "content_settings", None)
        content_type = getattr(content_settings, "content_type", None) or None
        if content_type == SERVICE_DEFAULT_CONTENT_TYPE:
            content_type = None

        return Blob(
            name=self._blob_name(key),
            data=content,
            content_type=content_type,
            created_at=getattr(properties, "creation_time", None),
            backend=self.backend_name,
        )

    async def blob(self, key: str) -> Blob | None:
        try:
            return await self._fetch_blob(key)
        except AzureError as e:
            raise self._backend_error("get blob", key, e) from e

    async def blobs(
        self,
        prefix: str | None = None,
        request: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """
        List blobs in the container, optionally under ``prefix``.

        Honours ``extensions`` and ``exclude``; ``include_dirs`` is ignored.
        """
        request = request or ListBlobsRequest()
        name_prefix = self._blob_name(prefix) if prefix else None

        results: list[Blob] = []
        try:
            async for properties in self._container.list_blobs(name_starts_with=name_prefix):
                if request.is_excluded(properties.name):
                    continue
                blob = await self._fetch_blob(properties.name)
                if blob is not None:
                    results.append(blob)
        except AzureError as e:
            raise self._backend_error("list blobs", name_prefix or "", e) from e

        return results

    async def delete(self, key: str) -> None:
        try:
            await self._container.delete_blob(self._blob_name(key))
        except ResourceNotFoundError:
            logger.debug(f"Blob {key} doesn't exist, nothing to delete")
        except AzureError as e:
            raise self._backend_error("delete", key, e) from e

    async def exists(self, key: str) -> bool:
        try:
            return await self._container.get_blob_client(self._blob_name(key)).exists()
        except AzureError as e:
            raise self._backend_error("check", key, e) from e

    async def upload(self, key: str, request: UploadRequest) -> None:
        name = self._blob_name(key)
        logger.info(f"Uploading blob {name} to container {self.config.container}")
        try:
            await self._container.upload_blob(
                name,
                request.data,
                overwrite=True,
                length=len(request.data),
                content_settings=ContentSettings(content_type=request.content_type),
                metadata=request.metadata or None,
            )
        except AzureError as e:
            raise self._backend_error("upload", key, e) from e

    async def close(self) -> None:
        await self._service.close()
