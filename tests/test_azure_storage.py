"""Tests for the Azure Blob Storage backend against in-memory fakes."""

from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest
from azure.core.credentials import AzureNamedKeyCredential, AzureSasCredential
from azure.core.exceptions import (
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
)

from conftest import PNG_BYTES
from apps.api.images.service import ImageService
from packages.shared.exceptions import BackendError
from packages.shared.storage import ListBlobsRequest, UploadRequest
from packages.shared.storage.azure import (
    AzureBlobStorage,
    StaticTokenCredential,
    build_credential,
)
from packages.shared.storage.config import (
    AccessKeyCredential,
    AzureStorageConfig,
    BearerCredential,
    ChinaLocation,
    CustomLocation,
    PublicLocation,
    SasTokenCredential,
)

CREATED = datetime(2026, 5, 6, 7, 8, 9, tzinfo=UTC)


class FakeDownloader:
    def __init__(self, item: dict[str, Any]):
        self._data = item["data"]
        self.properties = SimpleNamespace(
            content_settings=SimpleNamespace(content_type=item["content_type"]),
            creation_time=CREATED,
        )

    async def readall(self) -> bytes:
        return self._data


class FakeBlobClient:
    def __init__(self, container: "FakeContainer", name: str):
        self._container = container
        self._name = name

    async def download_blob(self) -> FakeDownloader:
        self._container.check()
        item = self._container.blobs.get(self._name)
        if item is None:
            raise ResourceNotFoundError("The specified blob does not exist.")
        return FakeDownloader(item)

    async def exists(self) -> bool:
        self._container.check()
        return self._name in self._container.blobs


class FakeContainer:
    def __init__(self):
        self.created = False
        self.blobs: dict[str, dict[str, Any]] = {}
        self.uploads: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None

    def check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def exists(self) -> bool:
        self.check()
        return self.created

    async def create_container(self) -> None:
        self.check()
        if self.created:
            raise ResourceExistsError("The specified container already exists.")
        self.created = True

    def get_blob_client(self, name: str) -> FakeBlobClient:
        return FakeBlobClient(self, name)

    async def list_blobs(self, name_starts_with: str | None = None):
        self.check()
        for name in sorted(self.blobs):
            if name_starts_with is None or name.startswith(name_starts_with):
                yield SimpleNamespace(name=name)

    async def delete_blob(self, name: str) -> None:
        self.check()
        if name not in self.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        del self.blobs[name]

    async def upload_blob(self, name: str, data: bytes, **kwargs: Any) -> None:
        self.check()
        self.uploads.append({"name": name, **kwargs})
        self.blobs[name] = {
            "data": data,
            # The service records a default type when none is sent
            "content_type": kwargs["content_settings"].content_type or "application/octet-stream",
        }


class FakeService:
    def __init__(self):
        self.container = FakeContainer()
        self.container_name: str | None = None
        self.closed = False

    def get_container_client(self, name: str) -> FakeContainer:
        self.container_name = name
        return self.container

    async def close(self) -> None:
        self.closed = True


def make_config(**overrides: Any) -> AzureStorageConfig:
    values: dict[str, Any] = {"location": PublicLocation(account="acct")}
    values.update(overrides)
    return AzureStorageConfig(**values)


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def azure(service) -> AzureBlobStorage:
    return AzureBlobStorage(make_config(), service_client=service)


async def test_default_container_name(azure, service):
    assert service.container_name == "snapshelf"


async def test_init_creates_missing_container(azure, service):
    await azure.init()

    assert service.container.created


async def test_init_keeps_existing_container(azure, service):
    service.container.created = True

    await azure.init()

    assert service.container.created


async def test_upload_and_read(azure, service):
    await azure.upload("abc123.png", UploadRequest(data=PNG_BYTES, content_type="image/png"))

    upload = service.container.uploads[-1]
    assert upload["overwrite"] is True
    assert upload["length"] == len(PNG_BYTES)

    assert await azure.open("abc123.png") == PNG_BYTES
    assert await azure.exists("abc123.png")

    blob = await azure.blob("abc123.png")
    assert blob is not None
    assert blob.content_type == "image/png"
    assert blob.created_at == CREATED
    assert blob.backend == "azure"


async def test_missing_content_type_is_unknown(azure):
    await azure.upload("raw.bin", UploadRequest(data=PNG_BYTES))

    blob = await azure.blob("raw.bin")

    assert blob is not None
    assert blob.content_type is None


async def test_untyped_image_is_served_with_sniffed_type(azure):
    await azure.upload("abc123.png", UploadRequest(data=PNG_BYTES))

    image = await ImageService(azure, "http://localhost:3621/").fetch("abc123.png")

    assert image.content_type == "image/png"
    assert image.data == PNG_BYTES


async def test_not_found_is_none(azure):
    assert await azure.open("missing.png") is None
    assert await azure.blob("missing.png") is None
    assert await azure.exists("missing.png") is False


async def test_delete_missing_succeeds(azure):
    await azure.delete("missing.png")


async def test_blobs_with_prefix_and_filters(azure):
    for name in ("a.png", "b.gif", "sub/c.png", "sub/d.gif"):
        await azure.upload(name, UploadRequest(data=PNG_BYTES))

    assert [b.name for b in await azure.blobs()] == ["a.png", "b.gif", "sub/c.png", "sub/d.gif"]
    assert [b.name for b in await azure.blobs("sub/")] == ["sub/c.png", "sub/d.gif"]

    request = ListBlobsRequest(extensions=["gif"])
    assert [b.name for b in await azure.blobs(request=request)] == ["b.gif", "sub/d.gif"]


async def test_service_errors_are_backend_errors(azure, service):
    service.container.fail_with = ServiceRequestError("connection refused")

    with pytest.raises(BackendError):
        await azure.open("abc123.png")
    with pytest.raises(BackendError):
        await azure.upload("abc123.png", UploadRequest(data=PNG_BYTES))
    with pytest.raises(BackendError):
        await azure.init()


async def test_close_closes_service(azure, service):
    await azure.close()

    assert service.closed


class TestCredentials:
    def test_anonymous(self):
        assert build_credential(make_config()) is None

    def test_access_key(self):
        config = make_config(credential=AccessKeyCredential(account="acct", access_key="a2V5"))

        credential = build_credential(config)

        assert isinstance(credential, AzureNamedKeyCredential)
        assert credential.named_key.name == "acct"

    def test_sas_token(self):
        credential = build_credential(make_config(credential=SasTokenCredential(token="sv=2024")))

        assert isinstance(credential, AzureSasCredential)
        assert credential.signature == "sv=2024"

    async def test_bearer(self):
        credential = build_credential(make_config(credential=BearerCredential(token="t0k3n")))

        assert isinstance(credential, StaticTokenCredential)
        token = await credential.get_token("https://storage.azure.com/.default")
        assert token.token == "t0k3n"
        assert token.expires_on > datetime.now(UTC).timestamp()


class TestAccountUrl:
    def test_public(self):
        assert make_config().account_url == "https://acct.blob.core.windows.net"

    def test_china(self):
        config = make_config(location=ChinaLocation(account="acct"))

        assert config.account_url == "https://acct.blob.core.chinacloudapi.cn"

    def test_custom(self):
        config = make_config(location=CustomLocation(account="devstoreaccount1", uri="http://127.0.0.1:10000/devstoreaccount1/"))

        assert config.account_url == "http://127.0.0.1:10000/devstoreaccount1"

    def test_discriminated_by_kind(self):
        config = AzureStorageConfig.model_validate(
            {
                "credential": {"kind": "sastoken", "token": "sv=2024"},
                "location": {"kind": "china", "account": "acct"},
            }
        )

        assert isinstance(config.credential, SasTokenCredential)
        assert isinstance(config.location, ChinaLocation)
