from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for application service level exceptions."""


class FileValidationError(ServiceError, ValueError):
    """Raised when a call is rejected before any backend request is made."""


class BaseService:
    """Provides argument guard rails shared by application services."""

    def _require(self, value: Any, name: str) -> Any:
        if value is None:
            raise FileValidationError(f"{name} is required")
        return value

    def _require_not_blank(self, value: str | None, name: str) -> str:
        if value is None or not str(value).strip():
            raise FileValidationError(f"{name} must not be blank")
        return value
