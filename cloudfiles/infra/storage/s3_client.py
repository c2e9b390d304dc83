"""boto3 adapter behind :class:`~cloudfiles.infra.storage.client.StorageClient`.

Works against AWS S3 and S3-compatible servers (MinIO, Ceph RGW, ...) through
``S3_ENDPOINT_URL`` and ``S3_ADDRESSING_STYLE``. Errors the service answers
with become ``StorageServiceError`` carrying the S3 error code; transport,
credential and parsing failures become plain ``StorageError``.
"""

from __future__ import annotations

import logging
from contextlib import closing, contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Mapping

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from cloudfiles.infra.storage.client import (
    ObjectHead,
    ObjectPage,
    StorageError,
    StorageServiceError,
)
from cloudfiles.infra.storage.uri import StorageUri, parse_storage_uri

if TYPE_CHECKING:
    from cloudfiles.common.config import Settings

logger = logging.getLogger("cloudfiles.storage.s3")


def _service_error(action: str, exc: ClientError) -> StorageServiceError:
    error = exc.response.get("Error") or {}
    metadata = exc.response.get("ResponseMetadata") or {}
    code = error.get("Code")
    status_code = metadata.get("HTTPStatusCode")
    return StorageServiceError(
        f"Failed to {action}: {exc}",
        code=str(code) if code is not None else None,
        status_code=int(status_code) if status_code is not None else None,
    )


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ClientError as exc:
        raise _service_error(action, exc) from exc
    except Exception as exc:
        raise StorageError(f"Failed to {action}: {exc}") from exc


class S3StorageClient:
    def __init__(self, *, settings: "Settings") -> None:
        self._scheme = settings.STORAGE_URI_SCHEME
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        config = Config(s3={"addressing_style": settings.S3_ADDRESSING_STYLE})
        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=settings.S3_USE_SSL,
            config=config,
        )

    def parse_uri(self, uri: str) -> StorageUri:
        return parse_storage_uri(uri, scheme=self._scheme)

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        body: bytes,
        content_type: str,
        metadata: Mapping[str, str],
    ) -> None:
        """Single-request PUT; S3 stores ``metadata`` as ``x-amz-meta-*`` headers."""
        with _translate_errors("put object"):
            self._client.put_object(
                Bucket=bucket,
                Key=object_key,
                Body=body,
                ContentType=content_type,
                Metadata=dict(metadata),
            )

    def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        with _translate_errors("get object metadata"):
            response = self._client.head_object(Bucket=bucket, Key=object_key)

        size = response.get("ContentLength")
        return ObjectHead(
            size_bytes=int(size) if size is not None else 0,
            content_type=response.get("ContentType"),
            last_modified=response.get("LastModified"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def get_object_bytes(self, *, bucket: str, object_key: str) -> bytes:
        with _translate_errors("get object"):
            response = self._client.get_object(Bucket=bucket, Key=object_key)
            with closing(response["Body"]) as body:
                return body.read()

    def iter_object_pages(self, *, bucket: str, prefix: str) -> Iterator[ObjectPage]:
        """Walk every ``list_objects_v2`` page under ``prefix``, lazily."""
        paginator = self._client.get_paginator("list_objects_v2")
        with _translate_errors("list objects"):
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys = tuple(item["Key"] for item in page.get("Contents") or [])
                logger.debug(
                    "list_page bucket=%s prefix=%s keys=%d", bucket, prefix, len(keys)
                )
                yield ObjectPage(keys=keys)

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Idempotent: S3 answers 204 for keys that do not exist."""
        with _translate_errors("delete object"):
            self._client.delete_object(Bucket=bucket, Key=object_key)
