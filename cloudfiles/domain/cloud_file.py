from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class CloudFile:
    """File descriptor assembled from backend object metadata.

    ``id`` and ``filename`` always hold the same ``scheme://bucket/key``
    identifier; the storage backend is the only source of truth, so a
    descriptor is rebuilt on every read and never cached.
    """

    id: str
    filename: str
    content_type: str
    size: int
    last_modified: datetime | None = None
    user_id: str | None = None
    checksum: str | None = None

    def __post_init__(self) -> None:
        if self.id != self.filename:
            raise ValueError("CloudFile id and filename must be identical")
