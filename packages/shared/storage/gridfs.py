"""MongoDB GridFS blob storage backend.

Payloads are split into fixed-size chunks by GridFS and referenced from a
metadata document (``<bucket>.files``) keyed by filename. Metadata documents
are read as ``RawBSONDocument`` so that a corrupted document only fails when
its fields are decoded, and can be skipped while listing.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from bson import CodecOptions
from bson.errors import BSONError
from bson.raw_bson import RawBSONDocument
from gridfs import AsyncGridFSBucket
from gridfs.errors import NoFile
from pymongo import DESCENDING, AsyncMongoClient
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import (
    Nearest,
    Primary,
    PrimaryPreferred,
    Secondary,
    SecondaryPreferred,
)
from pymongo.write_concern import WriteConcern

from packages.shared.exceptions import (
    BackendError,
    DecodeError,
    FieldTypeError,
    MalformedDocumentError,
    MissingFieldError,
)
from packages.shared.storage.base import (
    Blob,
    BlobStorageBackend,
    ListBlobsRequest,
    UploadRequest,
)
from packages.shared.storage.config import GridfsStorageConfig

logger = logging.getLogger(__name__)

BACKEND = "gridfs"

AUTH_MECHANISMS = {
    "scram-sha1": "SCRAM-SHA-1",
    "scram-sha256": "SCRAM-SHA-256",
    "x509": "MONGODB-X509",
    "gssapi": "GSSAPI",
    "plain": "PLAIN",
}

READ_PREFERENCES = {
    "primary-preferred": PrimaryPreferred,
    "secondary": Secondary,
    "secondary-preferred": SecondaryPreferred,
    "nearest": Nearest,
}

LATEST_FIRST = [("uploadDate", DESCENDING), ("_id", DESCENDING)]


# =============================================================================
# Metadata decoding
# =============================================================================


def _get(doc: Mapping[str, Any], field: str) -> Any:
    try:
        return doc[field]
    except KeyError:
        raise MissingFieldError(field, backend=BACKEND) from None
    except BSONError as e:
        raise MalformedDocumentError(f"bson error: {e}", field=field, backend=BACKEND) from e


def _get_typed(doc: Mapping[str, Any], field: str, expected: type, type_name: str) -> Any:
    value = _get(doc, field)
    # bool is an int subclass; BSON keeps them distinct
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise FieldTypeError(field, type_name, type(value).__name__, backend=BACKEND)
    return value


def _get_optional_str(doc: Mapping[str, Any], field: str) -> str | None:
    try:
        value = doc.get(field)
    except BSONError as e:
        raise MalformedDocumentError(f"bson error: {e}", field=field, backend=BACKEND) from e
    if value is not None and not isinstance(value, str):
        raise FieldTypeError(field, "string", type(value).__name__, backend=BACKEND)
    return value


def decode_file_id(doc: Mapping[str, Any]) -> Any:
    """Return the ``_id`` of a files-collection document."""
    return _get(doc, "_id")


def decode_blob(data: bytes, doc: Mapping[str, Any]) -> Blob:
    """
    Build a Blob from a reassembled payload and its metadata document.

    Raises:
        MissingFieldError: ``filename``, ``length`` or ``uploadDate`` is absent
        FieldTypeError: A field has the wrong BSON type
        MalformedDocumentError: The document is not valid BSON
    """
    filename = _get_typed(doc, "filename", str, "string")
    length = _get_typed(doc, "length", int, "int64")
    upload_date = _get_typed(doc, "uploadDate", datetime, "datetime")

    content_type = _get_optional_str(doc, "contentType")
    if content_type is None:
        metadata = _get_optional_metadata(doc)
        if metadata is not None:
            content_type = _get_optional_str(metadata, "contentType")

    if length < 0:
        length = 0
    if length != len(data):
        logger.warning(
            f"[gridfs] file [{filename}] reports length {length} but {len(data)} bytes were read"
        )

    created_at: datetime | None = upload_date
    if upload_date.timestamp() < 0:
        logger.warning(f"[gridfs] created_at timestamp for file [{filename}] was negative")
        created_at = None

    return Blob(
        name=filename,
        data=data,
        content_type=content_type,
        created_at=created_at,
        backend=BACKEND,
    )


def _get_optional_metadata(doc: Mapping[str, Any]) -> Mapping[str, Any] | None:
    try:
        metadata = doc.get("metadata")
    except BSONError as e:
        raise MalformedDocumentError(f"bson error: {e}", field="metadata", backend=BACKEND) from e
    if metadata is not None and not isinstance(metadata, Mapping):
        raise FieldTypeError("metadata", "document", type(metadata).__name__, backend=BACKEND)
    return metadata


# =============================================================================
# Client construction
# =============================================================================


def build_client_kwargs(config: GridfsStorageConfig) -> dict[str, Any]:
    """Translate the storage config into AsyncMongoClient keyword arguments."""
    kwargs: dict[str, Any] = {"host": config.servers}
    if config.username is not None or config.password is not None:
        kwargs["username"] = config.username or ""
        kwargs["password"] = config.password or ""
    if config.credential_source:
        kwargs["authSource"] = config.credential_source
    if config.credential_mechanism:
        mechanism = config.credential_mechanism.lower()
        if mechanism not in AUTH_MECHANISMS:
            raise ValueError(f"unknown credential mechanism: {config.credential_mechanism!r}")
        kwargs["authMechanism"] = AUTH_MECHANISMS[mechanism]
    if config.mechanism_properties:
        kwargs["authMechanismProperties"] = dict(config.mechanism_properties)
    if config.replica_set:
        kwargs["replicaSet"] = config.replica_set
    if config.app_name:
        kwargs["appname"] = config.app_name
    if config.connect_timeout_ms is not None:
        kwargs["connectTimeoutMS"] = config.connect_timeout_ms
    return kwargs


def build_write_concern(config: GridfsStorageConfig) -> WriteConcern | None:
    if config.write_concern is None:
        return None

    value = config.write_concern.strip()
    w: int | str = value
    if value.isdigit():
        w = int(value)
    elif value.lower() == "majority":
        w = "majority"
    return WriteConcern(
        w=w,
        wtimeout=config.write_concern_timeout_ms,
        j=config.write_concern_journal,
    )


def build_read_concern(config: GridfsStorageConfig) -> ReadConcern | None:
    if not config.read_concern:
        return None

    level = config.read_concern.lower()
    if level == "linear":
        level = "linearizable"
    return ReadConcern(level)


def build_read_preference(config: GridfsStorageConfig) -> Any:
    if config.selection_criteria is None:
        return None
    if config.selection_criteria == "primary":
        return Primary()

    kwargs: dict[str, Any] = {}
    if config.tag_sets:
        kwargs["tag_sets"] = config.tag_sets
    if config.max_staleness_seconds is not None:
        kwargs["max_staleness"] = config.max_staleness_seconds
    return READ_PREFERENCES[config.selection_criteria](**kwargs)


# =============================================================================
# Backend
# =============================================================================


class GridfsStorage(BlobStorageBackend):
    """
    GridFS storage backend.

    Reads reassemble chunks sequentially from a download stream; uploads
    write a new revision and then remove older revisions with the same
    filename, so a key always resolves to its most recent upload.
    """

    def __init__(
        self,
        database: Any,
        bucket: Any,
        files: Any,
        client: Any | None = None,
    ):
        """
        Initialize GridFS storage.

        Args:
            database: Database holding the bucket (used for reachability checks)
            bucket: GridFS bucket
            files: The bucket's ``<name>.files`` collection, decoding RawBSONDocument
            client: Owning client, closed by ``close()``
        """
        self._database = database
        self._bucket = bucket
        self._files = files
        self._client = client

    @classmethod
    def from_config(cls, config: GridfsStorageConfig) -> "GridfsStorage":
        """Create the client, database handle and bucket from configuration."""
        client: AsyncMongoClient = AsyncMongoClient(**build_client_kwargs(config))
        database = client.get_database(
            config.database,
            read_preference=build_read_preference(config),
            write_concern=build_write_concern(config),
            read_concern=build_read_concern(config),
        )

        bucket_kwargs: dict[str, Any] = {"bucket_name": config.bucket}
        if config.chunk_size:
            bucket_kwargs["chunk_size_bytes"] = config.chunk_size
        bucket = AsyncGridFSBucket(database, **bucket_kwargs)

        files = database.get_collection(
            f"{config.bucket}.files",
            codec_options=CodecOptions(document_class=RawBSONDocument, tz_aware=True),
        )
        return cls(database, bucket, files, client=client)

    @property
    def backend_name(self) -> str:
        return BACKEND

    def _backend_error(self, action: str, key: str, exc: Exception) -> BackendError:
        return BackendError(f"unable to {action} [{key}]: mongodb error: {exc}", backend=BACKEND)

    async def init(self) -> None:
        """Check that the database is reachable."""
        try:
            await self._database.command("ping")
        except PyMongoError as e:
            raise self._backend_error("reach database", str(self._database.name), e) from e

        logger.info(f"Using GridFS bucket in database {self._database.name}")

    async def _find_latest(self, key: str) -> Mapping[str, Any] | None:
        return await self._files.find_one({"filename": key}, sort=LATEST_FIRST)

    async def _read_all(self, file_id: Any) -> bytes | None:
        """Reassemble a file's chunks in order into one buffer."""
        try:
            stream = await self._bucket.open_download_stream(file_id)
        except NoFile:
            return None

        buffer = bytearray()
        try:
            while True:
                chunk = await stream.readchunk()
                if not chunk:
                    break
                buffer.extend(chunk)
        finally:
            await stream.close()

        return bytes(buffer)

    async def open(self, key: str) -> bytes | None:
        logger.debug(f"[gridfs] opening file [{key}]")
        try:
            doc = await self._find_latest(key)
            if doc is None:
                logger.debug(f"[gridfs] file [{key}] doesn't exist")
                return None
            return await self._read_all(decode_file_id(doc))
        except PyMongoError as e:
            raise self._backend_error("open", key, e) from e

    async def blob(self, key: str) -> Blob | None:
        logger.debug(f"[gridfs] getting file metadata for file [{key}]")
        try:
            doc = await self._find_latest(key)
            if doc is None:
                return None
            data = await self._read_all(decode_file_id(doc))
        except PyMongoError as e:
            raise self._backend_error("get blob", key, e) from e

        if data is None:
            return None
        return decode_blob(data, doc)

    async def blobs(
        self,
        prefix: str | None = None,
        request: ListBlobsRequest | None = None,
    ) -> list[Blob]:
        """
        List every file in the bucket.

        Filtering by ``prefix`` is not supported: a non-empty prefix returns
        an empty list (with a warning) rather than a partial result.
        ``request`` is ignored. Documents that fail to decode are logged and
        skipped.
        """
        if prefix:
            logger.warning(f"[gridfs] using blobs() with a prefix [{prefix}] is not supported")
            return []

        results: list[Blob] = []
        try:
            async for doc in self._files.find({}):
                try:
                    file_id = decode_file_id(doc)
                    data = await self._read_all(file_id)
                    if data is None:
                        continue
                    results.append(decode_blob(data, doc))
                except DecodeError as e:
                    logger.error(f"[gridfs] unable to convert document to a blob: {e}")
        except PyMongoError as e:
            raise self._backend_error("list files", "*", e) from e

        return results

    async def _delete_revisions(self, query: dict[str, Any]) -> int:
        ids = [decode_file_id(doc) async for doc in self._files.find(query, projection={"_id": 1})]
        for file_id in ids:
            try:
                await self._bucket.delete(file_id)
            except NoFile:
                continue
        return len(ids)

    async def _delete_older_revisions(self, key: str, file_id: Any, upload_date: datetime) -> int:
        """Delete revisions of ``key`` uploaded before ``(upload_date, file_id)``."""
        # uploadDate is stored with millisecond precision
        stored_date = upload_date.replace(microsecond=upload_date.microsecond // 1000 * 1000)
        return await self._delete_revisions(
            {
                "filename": key,
                "$or": [
                    {"uploadDate": {"$lt": stored_date}},
                    {"uploadDate": stored_date, "_id": {"$lt": file_id}},
                ],
            }
        )

    async def delete(self, key: str) -> None:
        logger.info(f"[gridfs] deleting file [{key}]")
        try:
            deleted = await self._delete_revisions({"filename": key})
        except PyMongoError as e:
            raise self._backend_error("delete", key, e) from e

        if not deleted:
            logger.debug(f"[gridfs] file [{key}] doesn't exist, nothing to delete")

    async def upload(self, key: str, request: UploadRequest) -> None:
        """
        Write the payload as a new GridFS file.

        The content type is recorded under ``metadata.contentType``. Once the
        write is finalized, revisions older than it are removed; a newer
        revision from a concurrent upload is left alone, so the most recent
        upload always survives.
        """
        metadata: dict[str, Any] = dict(request.metadata)
        if request.content_type:
            metadata["contentType"] = request.content_type

        logger.info(f"[gridfs] uploading file [{key}] ({len(request.data)} bytes)")
        try:
            async with self._bucket.open_upload_stream(key, metadata=metadata or None) as grid_in:
                await grid_in.write(request.data)
            await self._delete_older_revisions(key, grid_in._id, grid_in.upload_date)
        except PyMongoError as e:
            raise self._backend_error("upload", key, e) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
