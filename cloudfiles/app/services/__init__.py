from .base import BaseService, FileValidationError, ServiceError
from .file_metadata import compute_checksum, merge_metadata
from .file_storage_service import (
    CloudFileNotFoundError,
    CloudFileStorageService,
    InvalidFileContentError,
    InvalidFileIdError,
)

__all__ = [
    "BaseService",
    "ServiceError",
    "FileValidationError",
    "InvalidFileIdError",
    "InvalidFileContentError",
    "CloudFileNotFoundError",
    "CloudFileStorageService",
    "compute_checksum",
    "merge_metadata",
]
