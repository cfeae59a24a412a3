"""Configuration models for each storage backend.

Exactly one of these is active at a time; ``StorageConfig`` is a tagged
union on the ``service`` field.
"""

from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

ObjectAcl = Literal[
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
    "aws-exec-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
]

BucketAcl = Literal[
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
]

SelectionCriteria = Literal[
    "primary",
    "primary-preferred",
    "secondary",
    "secondary-preferred",
    "nearest",
]


class FilesystemStorageConfig(BaseModel):
    """Store blobs as files under a local directory."""

    service: Literal["filesystem"] = "filesystem"
    directory: Path = Path("./data")


class S3StorageConfig(BaseModel):
    """Amazon S3 or any S3-compatible server (MinIO, R2, ...)."""

    service: Literal["s3"] = "s3"
    bucket: str = "snapshelf"
    region: str = "us-east-1"
    endpoint: str | None = None  # Set for MinIO, None for AWS S3
    access_key_id: str | None = None
    secret_access_key: str | None = None
    enforce_path_access_style: bool = False
    enable_signer_v4_requests: bool = False
    default_object_acl: ObjectAcl = "bucket-owner-full-control"
    default_bucket_acl: BucketAcl = "authenticated-read"
    prefix: str | None = None
    app_name: str | None = None


# --- Azure credentials ---


class AnonymousCredential(BaseModel):
    kind: Literal["anonymous"] = "anonymous"


class AccessKeyCredential(BaseModel):
    kind: Literal["accesskey"] = "accesskey"
    account: str
    access_key: str


class SasTokenCredential(BaseModel):
    kind: Literal["sastoken"] = "sastoken"
    token: str


class BearerCredential(BaseModel):
    kind: Literal["bearer"] = "bearer"
    token: str


AzureCredential = Annotated[
    Union[AnonymousCredential, AccessKeyCredential, SasTokenCredential, BearerCredential],
    Field(discriminator="kind"),
]


# --- Azure cloud locations ---


class PublicLocation(BaseModel):
    kind: Literal["public"] = "public"
    account: str


class ChinaLocation(BaseModel):
    kind: Literal["china"] = "china"
    account: str


class CustomLocation(BaseModel):
    kind: Literal["custom"] = "custom"
    account: str
    uri: str


AzureLocation = Annotated[
    Union[PublicLocation, ChinaLocation, CustomLocation],
    Field(discriminator="kind"),
]


class AzureStorageConfig(BaseModel):
    """Azure Blob Storage container."""

    service: Literal["azure"] = "azure"
    credential: AzureCredential = Field(default_factory=AnonymousCredential)
    location: AzureLocation
    container: str = "snapshelf"

    @property
    def account_url(self) -> str:
        """Blob service endpoint for the configured location."""
        location = self.location
        if isinstance(location, CustomLocation):
            return location.uri.rstrip("/")
        if isinstance(location, ChinaLocation):
            return f"https://{location.account}.blob.core.chinacloudapi.cn"
        return f"https://{location.account}.blob.core.windows.net"


class GridfsStorageConfig(BaseModel):
    """MongoDB GridFS bucket."""

    service: Literal["gridfs"] = "gridfs"
    servers: list[str] = Field(default_factory=lambda: ["localhost:27017"])
    username: str | None = None
    password: str | None = None
    credential_source: str | None = None
    credential_mechanism: str | None = None
    mechanism_properties: dict[str, str] = Field(default_factory=dict)
    database: str = "snapshelf"
    bucket: str = "snapshelf"
    chunk_size: int | None = Field(default=None, gt=0)
    write_concern: str | None = None  # node count, "majority" or a tag name
    write_concern_journal: bool | None = None
    write_concern_timeout_ms: int | None = None
    read_concern: str | None = None
    selection_criteria: SelectionCriteria | None = None
    tag_sets: list[dict[str, str]] = Field(default_factory=list)
    max_staleness_seconds: int | None = None
    replica_set: str | None = None
    app_name: str | None = None
    connect_timeout_ms: int | None = None


StorageConfig = Annotated[
    Union[FilesystemStorageConfig, S3StorageConfig, AzureStorageConfig, GridfsStorageConfig],
    Field(discriminator="service"),
]
