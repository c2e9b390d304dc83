"""Object storage abstraction layer.

This module provides a protocol-based abstraction for object storage backends,
enabling support for S3, MinIO, and other S3-compatible services.
"""

from .client import (
    ObjectHead,
    ObjectPage,
    StorageClient,
    StorageError,
    StorageServiceError,
)
from .uri import StorageUri, build_storage_uri, parse_storage_uri

__all__ = [
    "ObjectHead",
    "ObjectPage",
    "StorageClient",
    "StorageError",
    "StorageServiceError",
    "StorageUri",
    "build_storage_uri",
    "parse_storage_uri",
]
