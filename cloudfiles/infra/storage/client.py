"""Storage client protocol and data types.

This module defines the interface the file storage service consumes from an
object storage backend: URI resolution, single-object put/head/get/delete,
and paginated listing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, Mapping, Protocol

from .uri import StorageUri

# Error codes meaning the object is absent or the caller may not see it.
NOT_FOUND_CODES = frozenset(
    {"404", "NoSuchKey", "NotFound", "403", "AccessDenied", "Forbidden"}
)


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""


class StorageServiceError(StorageError):
    """Raised when the storage backend answers a request with an error."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        if self.code in NOT_FOUND_CODES:
            return True
        return self.status_code in (403, 404)


@dataclass(frozen=True, slots=True)
class ObjectHead:
    """Metadata from a HEAD object request."""

    size_bytes: int
    content_type: str | None
    last_modified: datetime | None
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ObjectPage:
    """Object keys from one page of a listing, in backend order."""

    keys: tuple[str, ...]


class StorageClient(Protocol):
    """Protocol defining the interface for object storage backends.

    Implementations must provide all methods defined here.
    Currently supports S3-compatible storage services.
    """

    def parse_uri(self, uri: str) -> StorageUri:
        """Decompose a ``scheme://bucket/key`` identifier.

        Raises:
            ValueError: If the identifier does not use the backend's scheme.
        """
        ...

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        body: bytes,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None:
        """Write an object in a single request.

        Args:
            bucket: Target bucket name.
            object_key: Object key (path) in the bucket.
            body: Full object content.
            content_type: MIME type of the object.
            metadata: User metadata, string values only.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content.

        Raises:
            StorageServiceError: If the object doesn't exist (``not_found``)
                or the backend rejects the request.
            StorageError: If the backend cannot be reached.
        """
        ...

    def get_object_bytes(self, *, bucket: str, object_key: str) -> bytes:
        """Download the full content of an object.

        Raises:
            StorageServiceError: If the object doesn't exist or the backend
                rejects the request.
            StorageError: If the backend cannot be reached.
        """
        ...

    def iter_object_pages(self, *, bucket: str, prefix: str) -> Iterator[ObjectPage]:
        """Yield every listing page for keys starting with ``prefix``.

        Raises:
            StorageError: If a page request fails.
        """
        ...

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object from storage.

        Deleting a missing object is not an error.

        Raises:
            StorageError: If the operation fails.
        """
        ...
