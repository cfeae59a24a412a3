"""Tests for the S3 storage backend against an in-memory fake client."""

from datetime import UTC, datetime
from typing import Any

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from conftest import PNG_BYTES
from packages.shared.exceptions import BackendError
from packages.shared.storage import ListBlobsRequest, UploadRequest
from packages.shared.storage.config import S3StorageConfig
from packages.shared.storage.s3 import S3Storage

LAST_MODIFIED = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    def __init__(self, data: bytes):
        self._data = data

    async def read(self) -> bytes:
        return self._data


class FakeS3Client:
    """Just enough of the S3 API for the backend, with tiny list pages."""

    PAGE_SIZE = 2

    def __init__(self):
        self.buckets: set[str] = set()
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    def _record(self, name: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((name, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    async def head_bucket(self, **kwargs):
        self._record("head_bucket", kwargs)
        if kwargs["Bucket"] not in self.buckets:
            raise client_error("404", "HeadBucket")
        return {}

    async def create_bucket(self, **kwargs):
        self._record("create_bucket", kwargs)
        self.buckets.add(kwargs["Bucket"])
        return {}

    async def put_object(self, **kwargs):
        self._record("put_object", kwargs)
        self.objects[kwargs["Key"]] = {
            "Body": kwargs["Body"],
            "ContentType": kwargs.get("ContentType", "binary/octet-stream"),
            "Metadata": kwargs.get("Metadata", {}),
        }
        return {}

    async def get_object(self, **kwargs):
        self._record("get_object", kwargs)
        obj = self.objects.get(kwargs["Key"])
        if obj is None:
            raise client_error("NoSuchKey", "GetObject")
        return {
            "Body": FakeBody(obj["Body"]),
            "ContentType": obj["ContentType"],
            "LastModified": LAST_MODIFIED,
        }

    async def head_object(self, **kwargs):
        self._record("head_object", kwargs)
        if kwargs["Key"] not in self.objects:
            raise client_error("404", "HeadObject")
        return {}

    async def delete_object(self, **kwargs):
        self._record("delete_object", kwargs)
        self.objects.pop(kwargs["Key"], None)
        return {}

    async def list_objects_v2(self, **kwargs):
        self._record("list_objects_v2", kwargs)
        keys = sorted(k for k in self.objects if k.startswith(kwargs.get("Prefix", "")))
        start = int(kwargs.get("ContinuationToken", 0))
        page = keys[start : start + self.PAGE_SIZE]
        truncated = start + self.PAGE_SIZE < len(keys)
        response: dict[str, Any] = {
            "Contents": [{"Key": k} for k in page],
            "IsTruncated": truncated,
        }
        if truncated:
            response["NextContinuationToken"] = str(start + self.PAGE_SIZE)
        return response


class FakeClientContext:
    def __init__(self, client: FakeS3Client):
        self._client = client

    async def __aenter__(self) -> FakeS3Client:
        return self._client

    async def __aexit__(self, *args) -> None:
        return None


class FakeSession:
    def __init__(self):
        self.s3 = FakeS3Client()
        self.client_kwargs: list[dict[str, Any]] = []

    def client(self, service: str, **kwargs):
        assert service == "s3"
        self.client_kwargs.append(kwargs)
        return FakeClientContext(self.s3)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def s3(session) -> S3Storage:
    return S3Storage(S3StorageConfig(bucket="images"), session=session)


async def test_init_creates_missing_bucket(s3, session):
    await s3.init()

    assert "images" in session.s3.buckets
    create = next(kwargs for name, kwargs in session.s3.calls if name == "create_bucket")
    assert create["ACL"] == "authenticated-read"
    assert "CreateBucketConfiguration" not in create


async def test_init_uses_location_constraint_outside_us_east_1(session):
    storage = S3Storage(S3StorageConfig(bucket="images", region="eu-west-1"), session=session)

    await storage.init()

    create = next(kwargs for name, kwargs in session.s3.calls if name == "create_bucket")
    assert create["CreateBucketConfiguration"] == {"LocationConstraint": "eu-west-1"}


async def test_init_keeps_existing_bucket(s3, session):
    session.s3.buckets.add("images")

    await s3.init()

    assert [name for name, _ in session.s3.calls] == ["head_bucket"]


async def test_upload_and_read(s3, session):
    await s3.upload("abc123.png", UploadRequest(data=PNG_BYTES, content_type="image/png"))

    put = session.s3.calls[-1][1]
    assert put["ACL"] == "bucket-owner-full-control"
    assert put["ContentType"] == "image/png"
    assert put["ContentLength"] == len(PNG_BYTES)

    assert await s3.open("abc123.png") == PNG_BYTES

    blob = await s3.blob("abc123.png")
    assert blob is not None
    assert blob.content_type == "image/png"
    assert blob.created_at == LAST_MODIFIED
    assert blob.size == len(PNG_BYTES)
    assert blob.backend == "s3"


async def test_protocol_default_content_type_is_unknown(s3):
    await s3.upload("raw.bin", UploadRequest(data=PNG_BYTES))

    blob = await s3.blob("raw.bin")

    assert blob is not None
    assert blob.content_type is None


async def test_missing_key_is_none(s3):
    assert await s3.open("missing.png") is None
    assert await s3.blob("missing.png") is None
    assert await s3.exists("missing.png") is False


async def test_delete_missing_succeeds(s3):
    await s3.delete("missing.png")


async def test_prefix_is_applied_to_keys(session):
    storage = S3Storage(S3StorageConfig(bucket="images", prefix="/uploads/"), session=session)

    await storage.upload("./a.png", UploadRequest(data=PNG_BYTES))

    assert list(session.s3.objects) == ["uploads/a.png"]
    assert await storage.exists("a.png")
    assert [b.name for b in await storage.blobs()] == ["a.png"]


async def test_blobs_follows_continuation_tokens(s3):
    for name in ("a.png", "b.png", "c.png", "d.gif", "e.png"):
        await s3.upload(name, UploadRequest(data=PNG_BYTES))

    names = [b.name for b in await s3.blobs()]

    assert names == ["a.png", "b.png", "c.png", "d.gif", "e.png"]


async def test_blobs_honours_request_filters(s3):
    for name in ("a.png", "b.gif", "c.png"):
        await s3.upload(name, UploadRequest(data=PNG_BYTES))

    request = ListBlobsRequest(extensions=["png"], exclude=["c.png"])
    names = [b.name for b in await s3.blobs(request=request)]

    assert names == ["a.png"]


async def test_other_client_errors_are_backend_errors(s3, session):
    session.s3.fail_with = client_error("AccessDenied", "GetObject")

    with pytest.raises(BackendError):
        await s3.open("abc123.png")


async def test_connection_errors_are_backend_errors(s3, session):
    session.s3.fail_with = EndpointConnectionError(endpoint_url="http://localhost:9000")

    with pytest.raises(BackendError):
        await s3.upload("abc123.png", UploadRequest(data=PNG_BYTES))


def test_client_kwargs(session):
    config = S3StorageConfig(
        bucket="images",
        region="eu-central-1",
        endpoint="http://localhost:9000",
        access_key_id="minio",
        secret_access_key="minio123",
        enforce_path_access_style=True,
        enable_signer_v4_requests=True,
        app_name="snapshelf",
    )
    kwargs = S3Storage(config, session=session)._get_client_kwargs()

    assert kwargs["region_name"] == "eu-central-1"
    assert kwargs["endpoint_url"] == "http://localhost:9000"
    assert kwargs["aws_access_key_id"] == "minio"
    assert kwargs["aws_secret_access_key"] == "minio123"
    assert kwargs["config"].s3 == {"addressing_style": "path"}
    assert kwargs["config"].signature_version == "s3v4"
    assert kwargs["config"].user_agent_extra == "snapshelf"
