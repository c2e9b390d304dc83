"""
Domain layer package housing the file descriptor model and its constants.
"""

from typing import Final

# Reserved object metadata keys, written on save and read back on fetch.
# S3 lower-cases user metadata keys, so both are lower-case here.
METADATA_USER_ID: Final[str] = "user-id"
METADATA_CHECKSUM: Final[str] = "checksum"
