"""File storage service over an S3-compatible object store.

Files are addressed by ``s3://bucket/path/to/file`` identifiers, which serve
as both the file ID and its filename. The service keeps no state of its own:
every descriptor it returns is rebuilt from the backend's object metadata.
"""

from __future__ import annotations

import io
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, BinaryIO, Iterator, Mapping

from cloudfiles.app.services.base import BaseService, FileValidationError, ServiceError
from cloudfiles.app.services.file_metadata import compute_checksum, merge_metadata
from cloudfiles.common.config import Settings, get_settings
from cloudfiles.domain import METADATA_CHECKSUM, METADATA_USER_ID
from cloudfiles.domain.cloud_file import CloudFile
from cloudfiles.infra.observability.metrics import record_storage_operation
from cloudfiles.infra.storage.client import StorageClient, StorageServiceError
from cloudfiles.infra.storage.s3_client import S3StorageClient
from cloudfiles.infra.storage.uri import build_storage_uri

# Read size used while buffering an upload payload
READ_CHUNK_BYTES = 1024 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"

logger = logging.getLogger("cloudfiles.storage")


class InvalidFileIdError(FileValidationError):
    """Raised when an identifier is not a ``scheme://bucket/key`` URI."""


class InvalidFileContentError(FileValidationError):
    """Raised when the upload payload cannot be buffered."""


class CloudFileNotFoundError(ServiceError):
    """Raised when the object does not exist or is not accessible."""


class CloudFileStorageService(BaseService):
    """Application service for storing and retrieving files in object storage.

    Single-object operations make one backend round trip (save makes two:
    the write and a metadata re-fetch). Backend failures other than
    not-found are never retried or translated; they surface as the storage
    client's ``StorageError``.
    """

    def __init__(
        self,
        *,
        storage_client: StorageClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._storage = storage_client or self._build_storage_client(self._settings)
        self._scheme = self._settings.STORAGE_URI_SCHEME
        self._max_upload_bytes = int(self._settings.STORAGE_MAX_UPLOAD_BYTES)
        self._list_concurrency = int(self._settings.STORAGE_LIST_CONCURRENCY)

    @staticmethod
    def _build_storage_client(settings: Settings) -> StorageClient:
        return S3StorageClient(settings=settings)

    def save(
        self,
        *,
        user_id: str | None,
        payload: BinaryIO,
        filename: str,
        content_type: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> CloudFile:
        """Upload a file and return its descriptor as persisted by the backend.

        Args:
            user_id: Optional owner, stored under the reserved owner key.
            payload: Binary stream, read to the end before uploading.
            filename: Target identifier, ``s3://bucket/path/to/file``.
            content_type: MIME type of the content.
            metadata: Extra metadata; ``None`` values are dropped, the rest
                are stringified.

        Returns:
            CloudFile re-fetched from the backend after the write.

        Raises:
            FileValidationError: If a required argument is missing or blank.
            InvalidFileIdError: If ``filename`` is not a valid identifier.
            InvalidFileContentError: If the payload cannot be read or is
                larger than ``STORAGE_MAX_UPLOAD_BYTES``.
            StorageError: If the backend write fails.
        """
        self._require(payload, "payload")
        self._require_not_blank(filename, "filename")
        self._require_not_blank(content_type, "content_type")

        bucket, key = self._resolve(filename)
        content = self._read_payload(payload)
        checksum = compute_checksum(content)
        object_metadata = merge_metadata(metadata, user_id=user_id, checksum=checksum)

        with self._observed("save"):
            logger.debug("put_object bucket=%s key=%s size=%d", bucket, key, len(content))
            self._storage.put_object(
                bucket=bucket,
                object_key=key,
                body=content,
                content_type=content_type,
                metadata=object_metadata,
            )
            cloud_file = self._fetch_file_metadata(bucket, key)

        logger.info(
            "file_saved bucket=%s key=%s size=%d checksum=%s",
            bucket,
            key,
            len(content),
            checksum,
            extra={
                "extra": {
                    "bucket": bucket,
                    "key": key,
                    "size": len(content),
                    "checksum": checksum,
                    "user_id": user_id,
                }
            },
        )
        return cloud_file

    def find_by_filename(self, filename: str) -> CloudFile | None:
        """Return the file descriptor, or ``None`` if the object is absent."""
        bucket, key = self._resolve(filename)
        try:
            with self._observed("find"):
                return self._fetch_file_metadata(bucket, key)
        except CloudFileNotFoundError:
            logger.debug("file_absent bucket=%s key=%s", bucket, key)
            return None

    def find_by_id(self, file_id: str) -> CloudFile | None:
        # IDs and filenames share one identifier space
        return self.find_by_filename(file_id)

    def get_input_stream(self, file_id: str) -> BinaryIO:
        """Return the object content as a binary stream.

        Raises:
            CloudFileNotFoundError: If the backend rejects the read for any
                reason, absence included.
            StorageError: If the backend cannot be reached.
        """
        bucket, key = self._resolve(file_id)
        with self._observed("get_content"):
            try:
                content = self._storage.get_object_bytes(bucket=bucket, object_key=key)
            except StorageServiceError as exc:
                raise CloudFileNotFoundError(str(exc)) from exc
        return io.BytesIO(content)

    def list_files(self, path: str) -> list[CloudFile]:
        """List every object whose key starts with the key part of ``path``.

        All listing pages are drained first; then each key costs one more
        metadata request. Results follow the backend's listing order.
        """
        bucket, prefix = self._resolve(path, require_key=False)
        with self._observed("list"):
            keys = [
                key
                for page in self._storage.iter_object_pages(bucket=bucket, prefix=prefix)
                for key in page.keys
            ]
            files = self._fetch_many(bucket, keys)

        logger.info("files_listed bucket=%s prefix=%s count=%d", bucket, prefix, len(files))
        return files

    def delete_by_id(self, file_id: str) -> None:
        """Delete the object. Deleting an absent object is not an error."""
        bucket, key = self._resolve(file_id)
        with self._observed("delete"):
            self._storage.delete_object(bucket=bucket, object_key=key)
        logger.info("file_deleted bucket=%s key=%s", bucket, key)

    def _resolve(self, identifier: str, *, require_key: bool = True) -> tuple[str, str]:
        """Split an identifier into ``(bucket, key)``.

        With ``require_key`` off, a missing key comes back as ``""``.
        """
        self._require_not_blank(identifier, "identifier")
        try:
            uri = self._storage.parse_uri(identifier)
        except ValueError as exc:
            raise InvalidFileIdError(str(exc)) from exc

        if not uri.bucket:
            raise InvalidFileIdError(f"Bucket is missing in {identifier!r}")
        if not uri.key:
            if require_key:
                raise InvalidFileIdError(f"Object key is missing in {identifier!r}")
            return uri.bucket, ""
        return uri.bucket, uri.key

    def _read_payload(self, payload: BinaryIO) -> bytes:
        limit = self._max_upload_bytes
        buffer = bytearray()
        try:
            while len(buffer) <= limit:
                chunk = payload.read(min(READ_CHUNK_BYTES, limit + 1 - len(buffer)))
                if not chunk:
                    break
                buffer += chunk
        # ValueError covers reads from a closed stream
        except (AttributeError, OSError, TypeError, ValueError, MemoryError) as exc:
            raise InvalidFileContentError(
                f"Stream failure or stream too large: {exc}"
            ) from exc
        if len(buffer) > limit:
            raise InvalidFileContentError(f"Stream too large: exceeds {limit} bytes")
        return bytes(buffer)

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    def _fetch_many(self, bucket: str, keys: list[str]) -> list[CloudFile]:
        if self._list_concurrency <= 1 or len(keys) <= 1:
            return [self._fetch_file_metadata(bucket, key) for key in keys]

        workers = min(self._list_concurrency, len(keys))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="cloudfiles-head"
        ) as pool:
            # map() keeps input order
            return list(pool.map(lambda key: self._fetch_file_metadata(bucket, key), keys))

    def _fetch_file_metadata(self, bucket: str, key: str) -> CloudFile:
        """Build a descriptor from the object's HEAD response.

        Raises:
            CloudFileNotFoundError: If the object is absent or inaccessible.
            StorageError: For any other backend failure.
        """
        try:
            head = self._storage.head_object(bucket=bucket, object_key=key)
        except StorageServiceError as exc:
            if exc.not_found:
                raise CloudFileNotFoundError(str(exc)) from exc
            raise

        identifier = build_storage_uri(self._scheme, bucket, key)
        metadata = head.metadata or {}
        return CloudFile(
            id=identifier,
            filename=identifier,
            last_modified=head.last_modified,
            content_type=head.content_type or DEFAULT_CONTENT_TYPE,
            size=head.size_bytes,
            user_id=metadata.get(METADATA_USER_ID),
            checksum=metadata.get(METADATA_CHECKSUM),
        )

    @contextmanager
    def _observed(self, operation: str) -> Iterator[None]:
        try:
            yield
        except CloudFileNotFoundError:
            record_storage_operation(operation, "not_found")
            raise
        except Exception:
            record_storage_operation(operation, "error")
            raise
        record_storage_operation(operation, "ok")
