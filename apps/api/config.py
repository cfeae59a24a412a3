"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from packages.shared.storage.config import (
    AccessKeyCredential,
    AnonymousCredential,
    AzureStorageConfig,
    BearerCredential,
    ChinaLocation,
    CustomLocation,
    FilesystemStorageConfig,
    GridfsStorageConfig,
    PublicLocation,
    S3StorageConfig,
    SasTokenCredential,
    StorageConfig,
)


CHOICE_ALIASES = {
    "access-key": "accesskey",
    "sas-token": "sastoken",
}

# Empty environment values fall back to these
CHOICE_DEFAULTS = {
    "storage_service": "filesystem",
    "azure_credential": "anonymous",
    "azure_location": "public",
}


def _split(value: str | None, sep: str = ",") -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(sep) if item.strip()]


def parse_mapping(value: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` into a dict."""
    result: dict[str, str] = {}
    for pair in _split(value):
        key, sep, item = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"expected 'key=value', got {pair!r}")
        result[key.strip()] = item.strip()
    return result


def parse_tag_sets(value: str | None) -> list[dict[str, str]]:
    """Parse ``dc=east,rack=1;dc=west`` into a list of tag sets."""
    return [parse_mapping(tag_set) for tag_set in _split(value, ";")]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "snapshelf"
    app_version: str = "0.1.0"
    build_commit: str = "unknown"
    build_date: str = "unknown"
    base_url: str = "http://localhost:3621/"
    uploader_key: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 3621
    log_level: str = "INFO"

    # Upload Limits
    max_upload_size_mb: int = 15

    # Storage
    storage_service: Literal["filesystem", "fs", "s3", "azure", "gridfs"] = "filesystem"
    storage_filesystem_directory: Path = Path("./data")

    # S3 (AWS, MinIO, ...)
    s3_bucket: str = "snapshelf"
    s3_region: str = "us-east-1"
    s3_endpoint: str | None = None  # Set for MinIO, None for AWS S3
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_enforce_path_access_style: bool = False
    s3_enable_signer_v4_requests: bool = False
    s3_default_object_acl: str = "bucket-owner-full-control"
    s3_default_bucket_acl: str = "authenticated-read"
    s3_prefix: str | None = None
    s3_app_name: str | None = None

    # Azure Blob Storage
    azure_credential: Literal["anonymous", "accesskey", "sastoken", "bearer"] = "anonymous"
    azure_access_key_account: str | None = None
    azure_access_key: str | None = None
    azure_sas_token: str | None = None
    azure_bearer_token: str | None = None
    azure_location: Literal["public", "china", "custom"] = "public"
    azure_account: str | None = None
    azure_uri: str | None = None
    azure_container: str = "snapshelf"

    # MongoDB GridFS
    gridfs_servers: str = "localhost:27017"  # comma separated host:port list
    gridfs_credentials: str | None = None  # "username:password"
    gridfs_credential_source: str | None = None
    gridfs_credential_mechanism: str | None = None
    gridfs_credential_mechanism_properties: str | None = None  # "key=value,..."
    gridfs_database: str = "snapshelf"
    gridfs_bucket: str = "snapshelf"
    gridfs_chunk_size: int | None = None
    gridfs_write_concern: str | None = None
    gridfs_write_concern_journal: bool | None = None
    gridfs_write_concern_timeout_ms: int | None = None
    gridfs_read_concern: str | None = None
    gridfs_selection_criteria: (
        Literal["primary", "primary-preferred", "secondary", "secondary-preferred", "nearest"] | None
    ) = None
    gridfs_read_preference_tag_sets: str | None = None  # "k=v,k2=v2;k3=v3"
    gridfs_read_preference_max_staleness: int | None = None
    gridfs_replica_set: str | None = None
    gridfs_app_name: str | None = None
    gridfs_connect_timeout_ms: int | None = None

    @field_validator("base_url")
    @classmethod
    def ensure_trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else f"{value}/"

    @field_validator(
        "storage_service",
        "azure_credential",
        "azure_location",
        "gridfs_selection_criteria",
        mode="before",
    )
    @classmethod
    def normalize_choice(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value

        value = value.strip().lower().replace("_", "-")
        if not value:
            return CHOICE_DEFAULTS.get(info.field_name)
        return CHOICE_ALIASES.get(value, value)

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    def storage_config(self) -> StorageConfig:
        """
        Build the configuration for the selected storage service.

        Raises:
            ValueError: If a field the selected service requires is unset
        """
        if self.storage_service == "s3":
            return S3StorageConfig(
                bucket=self.s3_bucket,
                region=self.s3_region,
                endpoint=self.s3_endpoint,
                access_key_id=self.s3_access_key_id,
                secret_access_key=self.s3_secret_access_key,
                enforce_path_access_style=self.s3_enforce_path_access_style,
                enable_signer_v4_requests=self.s3_enable_signer_v4_requests,
                default_object_acl=self.s3_default_object_acl,
                default_bucket_acl=self.s3_default_bucket_acl,
                prefix=self.s3_prefix,
                app_name=self.s3_app_name,
            )

        if self.storage_service == "azure":
            return AzureStorageConfig(
                credential=self._azure_credential(),
                location=self._azure_location(),
                container=self.azure_container,
            )

        if self.storage_service == "gridfs":
            return self._gridfs_config()

        return FilesystemStorageConfig(directory=self.storage_filesystem_directory)

    def _azure_credential(self):
        if self.azure_credential == "accesskey":
            if not self.azure_access_key_account or not self.azure_access_key:
                raise ValueError(
                    "AZURE_ACCESS_KEY_ACCOUNT and AZURE_ACCESS_KEY are required for accesskey credentials"
                )
            return AccessKeyCredential(
                account=self.azure_access_key_account,
                access_key=self.azure_access_key,
            )
        if self.azure_credential == "sastoken":
            if not self.azure_sas_token:
                raise ValueError("AZURE_SAS_TOKEN is required for sastoken credentials")
            return SasTokenCredential(token=self.azure_sas_token)
        if self.azure_credential == "bearer":
            if not self.azure_bearer_token:
                raise ValueError("AZURE_BEARER_TOKEN is required for bearer credentials")
            return BearerCredential(token=self.azure_bearer_token)
        return AnonymousCredential()

    def _azure_location(self):
        if not self.azure_account:
            raise ValueError("AZURE_ACCOUNT is required for azure storage")
        if self.azure_location == "custom":
            if not self.azure_uri:
                raise ValueError("AZURE_URI is required for a custom azure location")
            return CustomLocation(account=self.azure_account, uri=self.azure_uri)
        if self.azure_location == "china":
            return ChinaLocation(account=self.azure_account)
        return PublicLocation(account=self.azure_account)

    def _gridfs_config(self) -> GridfsStorageConfig:
        username = password = None
        if self.gridfs_credentials is not None:
            user, sep, secret = self.gridfs_credentials.strip().partition(":")
            if not sep:
                raise ValueError("GRIDFS_CREDENTIALS must be in the form 'username:password'")
            username = user or None
            password = secret or None

        return GridfsStorageConfig(
            servers=_split(self.gridfs_servers) or ["localhost:27017"],
            username=username,
            password=password,
            credential_source=self.gridfs_credential_source,
            credential_mechanism=self.gridfs_credential_mechanism,
            mechanism_properties=parse_mapping(self.gridfs_credential_mechanism_properties),
            database=self.gridfs_database,
            bucket=self.gridfs_bucket,
            chunk_size=self.gridfs_chunk_size,
            write_concern=self.gridfs_write_concern,
            write_concern_journal=self.gridfs_write_concern_journal,
            write_concern_timeout_ms=self.gridfs_write_concern_timeout_ms,
            read_concern=self.gridfs_read_concern,
            selection_criteria=self.gridfs_selection_criteria,
            tag_sets=parse_tag_sets(self.gridfs_read_preference_tag_sets),
            max_staleness_seconds=self.gridfs_read_preference_max_staleness,
            replica_set=self.gridfs_replica_set,
            app_name=self.gridfs_app_name,
            connect_timeout_ms=self.gridfs_connect_timeout_ms,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
