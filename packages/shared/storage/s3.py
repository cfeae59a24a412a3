"""S3-compatible blob storage backend (AWS S3, MinIO, R2, ...)."""

import logging
from typing import Any

import aioboto3
from aiobotocore.config import AioConfig
from botocore.exceptions import BotoCoreError, ClientError

from packages.shared.exceptions import BackendError
from packages.shared.storage.base import (
    Blob,
    BlobStorageBackend,
    ListBlobsRequest,
    UploadRequest,
)
from packages.shared.storage.config import S3StorageConfig

logger = logging.getLogger(__name__)

# Content type S3 reports for objects uploaded without one
PROTOCOL_DEFAULT_CONTENT_TYPE = "binary/octet-stream"

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
NO_BUCKET_CODES = {"NoSuchBucket", "NotFound", "404"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3Storage(BlobStorageBackend):
    """
    S3 storage backend.

    Supports both AWS S3 and compatible servers (via ``endpoint``).
    Keys are stored under the optional ``prefix``.
    """

    def __init__(self, config: S3StorageConfig, session: Any | None = None):
        """
        Initialize S3 storage.

        Args:
            config: Bucket, region, endpoint, ACL and addressing options
            session: aioboto3 session (a new one is created if not given)
        """
        self.config = config
        self.bucket = config.bucket
        self.prefix = (config.prefix or "").strip("/")
        self._session = session or aioboto3.Session()

    @property
    def backend_name(self) -> str:
        return "s3"

    def _get_client_kwargs(self) -> dict:
        """Build kwargs for S3 client."""
        config_kwargs: dict[str, Any] = {}
        if self.config.enforce_path_access_style:
            config_kwargs["s3"] = {"addressing_style": "path"}
        if self.config.enable_signer_v4_requests:
            config_kwargs["signature_version"] = "s3v4"
        if self.config.app_name:
            config_kwargs["user_agent_extra"] = self.config.app_name

        kwargs: dict[str, Any] = {
            "region_name": self.config.region,
        }
        if config_kwargs:
            kwargs["config"] = AioConfig(**config_kwargs)
        if self.config.endpoint:
            kwargs["endpoint_url"] = self.config.endpoint
        if self.config.access_key_id and self.config.secret_access_key:
            kwargs["aws_access_key_id"] = self.config.access_key_id
            kwargs["aws_secret_access_key"] = self.config.secret_access_key
        return kwargs

    def _client(self):
        return self._session.client("s3", **self._get_client_kwargs())

    def _object_key(self, key: str) -> str:
        key = key.removeprefix("./").lstrip("/")
        if self.prefix:
            return f"{self.prefix}/{key}"
        return key

    def _blob_name(self, object_key: str) -> str:
        if self.prefix:
            return object_key.removeprefix(f"{self.prefix}/")
        return object_key

    def _backend_error(self, action: str, key: str, exc: Exception) -> BackendError:
        return BackendError(f"unable to {action} [{key}]: {exc}", backend=self.backend_name)

    async def init(self) -> None:
        """Verify the bucket is reachable, creating it if it doesn't exist."""
        try:
            async with self._client() as s3:
                try:
                    await s3.head_bucket(Bucket=self.bucket)
                    logger.info(f"Using S3 bucket {self.bucket}")
                    return
                except ClientError as e:
                    if _error_code(e) not in NO_BUCKET_CODES:
                        raise

                logger.info(f"Bucket {self.bucket} doesn't exist, creating it")
                create_kwargs: dict[str, Any] = {
                    "Bucket": self.bucket,
                    "ACL": self.config.default_bucket_acl,
                }
                if self.config.region != "us-east-1":
                    create_kwargs["CreateBucketConfiguration"] = {
                        "LocationConstraint": self.config.region,
                    }
                await s3.create_bucket(**create_kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("initialize bucket", self.bucket, e) from e

    async def _get_object(self, s3: Any, key: str) -> dict | None:
        try:
            return await s3.get_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return None
            raise

    async def open(self, key: str) -> bytes | None:
        try:
            async with self._client() as s3:
                response = await self._get_object(s3, key)
                if response is None:
                    return None
                return await response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("open", key, e) from e

    async def _fetch_blob(self, s3: Any, key: str) -> Blob | None:
        response = await self._get_object(s3, key)
        if response is None:
            return None

        content = await response["Body"].read()
        content_type = response.get("ContentType")
        if content_type == PROTOCOL_DEFAULT_CONTENT_TYPE:
            content_type = None

        return Blob(
            name=key.removeprefix("./"),
            data=content,
            content_type=content_type,
            created_at=response.get("LastModified"),
            backend=self.backend_name,
        )

    async def blob(self, key: str) -> Blob | None:
        try:
            async with self._client() as s3:
                return await self._fetch_blob(s3, key)
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("get blob", key, e) from e

    async def blobs(
        self,
        prefix: str | None = None,
        request: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """
        List objects under the configured prefix (and ``prefix``, if given).

        Honours ``extensions`` and ``exclude``; ``include_dirs`` has no
        meaning for a flat keyspace and is ignored.
        """
        request = request or ListBlobsRequest()
        list_prefix = self._object_key(prefix) if prefix else (f"{self.prefix}/" if self.prefix else "")

        results: list[Blob] = []
        try:
            async with self._client() as s3:
                kwargs: dict[str, Any] = {"Bucket": self.bucket, "Prefix": list_prefix}
                while True:
                    page = await s3.list_objects_v2(**kwargs)
                    for obj in page.get("Contents", []):
                        name = self._blob_name(obj["Key"])
                        if request.is_excluded(name):
                            continue
                        blob = await self._fetch_blob(s3, name)
                        if blob is not None:
                            results.append(blob)

                    if not page.get("IsTruncated"):
                        break
                    kwargs["ContinuationToken"] = page["NextContinuationToken"]
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("list objects", list_prefix, e) from e

        return results

    async def delete(self, key: str) -> None:
        """Delete an object. S3 reports success for missing keys too."""
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self.bucket, Key=self._object_key(key))
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("delete", key, e) from e

    async def exists(self, key: str) -> bool:
        try:
            async with self._client() as s3:
                try:
                    await s3.head_object(Bucket=self.bucket, Key=self._object_key(key))
                    return True
                except ClientError as e:
                    if _error_code(e) in NOT_FOUND_CODES:
                        return False
                    raise
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("check", key, e) from e

    async def upload(self, key: str, request: UploadRequest) -> None:
        put_kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self._object_key(key),
            "Body": request.data,
            "ContentLength": len(request.data),
            "ACL": self.config.default_object_acl,
        }
        if request.content_type:
            put_kwargs["ContentType"] = request.content_type
        if request.metadata:
            put_kwargs["Metadata"] = request.metadata

        logger.info(f"Uploading object {put_kwargs['Key']} to bucket {self.bucket}")
        try:
            async with self._client() as s3:
                await s3.put_object(**put_kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("upload", key, e) from e
