"""Local disk blob storage backend."""

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

from packages.shared.exceptions import BackendError, ValidationError
from packages.shared.storage.base import (
    Blob,
    BlobStorageBackend,
    ListBlobsRequest,
    UploadRequest,
)
from packages.shared.storage.file_detection import detect_content_type

logger = logging.getLogger(__name__)

INVALID_KEY_MESSAGE = "invalid storage key"


def _walk(root: Path) -> list[tuple[Path, bool]]:
    """Every path under ``root`` in sorted order, with an is-directory flag."""
    return [(path, path.is_dir()) for path in sorted(root.rglob("*"))]


class FilesystemStorage(BlobStorageBackend):
    """
    Local disk storage backend.

    Keys are relative paths under ``base_path``. Content types are not
    recorded anywhere; they are sniffed from the bytes on every read.
    """

    def __init__(self, base_path: str | Path = "./data"):
        """
        Initialize local file storage.

        Args:
            base_path: Base directory for blob storage
        """
        self.base_path = Path(base_path)

    @property
    def backend_name(self) -> str:
        return "filesystem"

    def _resolve(self, key: str) -> Path:
        """
        Map a key onto a path under the base directory.

        Raises:
            ValidationError: If the key is absolute or escapes the base directory
        """
        if key.startswith("./"):
            key = key[2:]

        parts = PurePosixPath(key.replace("\\", "/")).parts
        if not parts or key.startswith("/") or ".." in parts or "\x00" in key:
            logger.debug(f"Rejected storage key {key!r}")
            raise ValidationError(INVALID_KEY_MESSAGE)

        root = self.base_path.resolve()
        full_path = root.joinpath(*parts).resolve()
        if not full_path.is_relative_to(root):
            logger.debug(f"Rejected storage key {key!r} outside {root}")
            raise ValidationError(INVALID_KEY_MESSAGE)

        return full_path

    def _io_error(self, action: str, key: str, exc: OSError) -> BackendError:
        return BackendError(f"unable to {action} [{key}]: {exc}", backend=self.backend_name)

    async def init(self) -> None:
        """Create the base directory."""
        try:
            await aiofiles.os.makedirs(self.base_path, exist_ok=True)
        except OSError as e:
            raise self._io_error("create directory", str(self.base_path), e) from e

        logger.info(f"Using filesystem storage at {self.base_path.resolve()}")

    async def open(self, key: str) -> bytes | None:
        full_path = self._resolve(key)
        logger.debug(f"Opening file {full_path}")

        if not await aiofiles.os.path.isfile(full_path):
            return None

        try:
            async with aiofiles.open(full_path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise self._io_error("read", key, e) from e

    async def _stat_blob(self, full_path: Path, name: str) -> Blob | None:
        try:
            async with aiofiles.open(full_path, "rb") as f:
                content = await f.read()
            stat = await aiofiles.os.stat(full_path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise self._io_error("read", name, e) from e

        return Blob(
            name=name,
            data=content,
            content_type=detect_content_type(content),
            created_at=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
            backend=self.backend_name,
        )

    async def blob(self, key: str) -> Blob | None:
        full_path = self._resolve(key)
        if not await aiofiles.os.path.isfile(full_path):
            return None

        return await self._stat_blob(full_path, key.removeprefix("./"))

    async def blobs(
        self,
        prefix: str | None = None,
        request: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """
        List files under the base directory, or under ``prefix`` if given.

        ``prefix`` names a sub-directory. Directories themselves are only
        listed when ``request.include_dirs`` is set.
        """
        request = request or ListBlobsRequest()
        root = self._resolve(prefix) if prefix else self.base_path.resolve()
        if not await aiofiles.os.path.isdir(root):
            return []

        base = self.base_path.resolve()
        results: list[Blob] = []
        for path, is_dir in await asyncio.to_thread(_walk, root):
            name = path.relative_to(base).as_posix()
            if request.is_excluded(name):
                continue

            if is_dir:
                if request.include_dirs:
                    results.append(Blob(name=name, data=b"", backend=self.backend_name))
                continue

            blob = await self._stat_blob(path, name)
            if blob is not None:
                results.append(blob)

        return results

    async def delete(self, key: str) -> None:
        full_path = self._resolve(key)
        try:
            await aiofiles.os.remove(full_path)
        except FileNotFoundError:
            logger.debug(f"File {full_path} doesn't exist, nothing to delete")
        except OSError as e:
            raise self._io_error("delete", key, e) from e

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(key))

    async def upload(self, key: str, request: UploadRequest) -> None:
        """
        Write a file, replacing any existing one.

        ``request.content_type`` is not persisted; reads sniff it.
        """
        full_path = self._resolve(key)
        logger.info(f"Uploading file {full_path} ({len(request.data)} bytes)")

        try:
            await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
            async with aiofiles.open(full_path, "wb") as f:
                await f.write(request.data)
        except OSError as e:
            raise self._io_error("write", key, e) from e
