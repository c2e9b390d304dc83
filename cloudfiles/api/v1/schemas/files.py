"""Pydantic schemas for file API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CloudFileOut(BaseModel):
    """Response model for a stored file."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    filename: str
    content_type: str
    size: int
    last_modified: datetime | None = None
    user_id: str | None = None
    checksum: str | None = None


class CloudFilesPage(BaseModel):
    """All files under a prefix, in backend listing order."""

    total: int
    items: list[CloudFileOut]
