"""Composite object identifiers of the form ``scheme://bucket/key``."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_SCHEME = "s3"


@dataclass(frozen=True, slots=True)
class StorageUri:
    """Decomposed object identifier.

    ``bucket`` and ``key`` are ``None`` when the corresponding segment is
    absent, e.g. ``s3://bucket`` has no key.
    """

    scheme: str
    bucket: str | None
    key: str | None

    @property
    def uri(self) -> str:
        return build_storage_uri(self.scheme, self.bucket or "", self.key or "")

    def __str__(self) -> str:
        return self.uri


def build_storage_uri(scheme: str, bucket: str, key: str) -> str:
    return f"{scheme}://{bucket}/{key}"


def parse_storage_uri(uri: str, *, scheme: str = DEFAULT_SCHEME) -> StorageUri:
    """Split ``scheme://bucket/path/to/key`` into its parts.

    The key keeps every character after the first slash following the
    bucket, including further slashes, ``?`` and ``#``, since all of them are
    legal in object keys.

    Raises:
        ValueError: If ``uri`` is not a string or does not use ``scheme``.
    """
    if not isinstance(uri, str):
        raise ValueError(f"Storage URI must be a string, got {type(uri).__name__}")

    prefix = f"{scheme}://"
    if uri[: len(prefix)].lower() != prefix.lower():
        raise ValueError(f"Storage URI must start with '{prefix}': {uri!r}")

    bucket, _, key = uri[len(prefix) :].partition("/")
    if any(ch.isspace() for ch in bucket):
        raise ValueError(f"Bucket name must not contain whitespace: {bucket!r}")

    return StorageUri(scheme=scheme, bucket=bucket or None, key=key or None)
