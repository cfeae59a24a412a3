"""
Pytest configuration and fixtures.

Provides reusable fixtures for FastAPI testing:
- settings: Settings pointing at a temporary filesystem store
- storage: Filesystem storage backend under a temporary directory
- app: The FastAPI application instance
- client: Sync TestClient for HTTP requests (runs the lifespan)
"""

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from apps.api.config import Settings
from apps.api.main import create_app
from packages.shared.storage import BlobStorageBackend, FilesystemStorage

UPLOADER_KEY = "secret"
BASE_URL = "http://localhost:3621/"

# =============================================================================
# Sample payloads
# =============================================================================

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 16
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 16
GIF_BYTES = b"GIF89a" + b"\x01\x00\x01\x00" + b"\x00" * 16
WEBP_BYTES = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 16
SVG_BYTES = (
    b'<?xml version="1.0" encoding="UTF-8"?>\n'
    b'<svg xmlns="http://www.w3.org/2000/svg" width="1" height="1"></svg>\n'
)


# =============================================================================
# Settings / Storage Fixtures
# =============================================================================


def make_settings(data_dir: Path, **overrides: Any) -> Settings:
    """Settings isolated from the real environment and .env file."""
    values: dict[str, Any] = {
        "uploader_key": UPLOADER_KEY,
        "base_url": BASE_URL,
        "storage_service": "filesystem",
        "storage_filesystem_directory": data_dir,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    return make_settings(data_dir)


@pytest.fixture
def storage(data_dir: Path) -> FilesystemStorage:
    return FilesystemStorage(base_path=data_dir)


# =============================================================================
# App / Client Fixtures
# =============================================================================


@pytest.fixture
def app(settings: Settings, storage: BlobStorageBackend) -> FastAPI:
    """Application wired to the temporary filesystem store."""
    return create_app(settings, storage)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """
    Create a TestClient for the FastAPI app.

    Entering the client runs the lifespan, which initializes storage.
    """
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_client(data_dir: Path) -> Generator[Callable[..., TestClient], None, None]:
    """Factory for clients with custom settings and/or storage."""
    clients: list[TestClient] = []

    def _make(storage: BlobStorageBackend | None = None, **overrides: Any) -> TestClient:
        app = create_app(
            make_settings(data_dir, **overrides),
            storage or FilesystemStorage(base_path=data_dir),
        )
        test_client = TestClient(app)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield _make

    for test_client in clients:
        test_client.__exit__(None, None, None)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": UPLOADER_KEY}
