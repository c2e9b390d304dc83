"""Object metadata assembly for uploads.

S3 user metadata only holds string values, so caller metadata is flattened
to text here and the reserved owner and checksum keys are injected last.
"""

from __future__ import annotations

import hashlib
from typing import Any, Mapping

from cloudfiles.domain import METADATA_CHECKSUM, METADATA_USER_ID


def compute_checksum(content: bytes) -> str:
    """Return the lower-case hex SHA-256 digest of ``content``."""
    return hashlib.sha256(content).hexdigest()


def merge_metadata(
    metadata: Mapping[str, Any] | None,
    *,
    user_id: str | None,
    checksum: str,
) -> dict[str, str]:
    """Build the metadata sent with a write.

    Entries whose value is ``None`` are dropped; every other value is
    stringified with ``str()``. A non-blank ``user_id`` and the checksum
    overwrite whatever the caller put under the reserved keys.
    """
    merged: dict[str, str] = {}
    if metadata:
        merged.update(
            {str(key): str(value) for key, value in metadata.items() if value is not None}
        )

    if user_id is not None and user_id.strip():
        merged[METADATA_USER_ID] = user_id

    merged[METADATA_CHECKSUM] = checksum
    return merged
