from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from cloudfiles.app.services.file_storage_service import CloudFileStorageService
from cloudfiles.common.auth import AuthenticationError, Authenticator, Principal
from cloudfiles.common.config import get_settings

logger = logging.getLogger("http")


@lru_cache(maxsize=1)
def _shared_file_storage_service() -> CloudFileStorageService:
    # boto3 clients are thread-safe; build one per process
    return CloudFileStorageService(settings=get_settings())


def get_file_storage_service() -> CloudFileStorageService:
    return _shared_file_storage_service()


def get_current_principal(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> Principal:
    try:
        return Authenticator(get_settings()).authenticate(
            authorization_header=authorization,
            fallback_user_id=x_user_id,
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401,
            detail={"message": str(exc), "error_code": "unauthenticated"},
        ) from exc


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if not settings.API_KEY_ENABLED:
        return
    expected = settings.API_KEY or ""
    if x_api_key and secrets.compare_digest(x_api_key, expected):
        return
    preview = f"{x_api_key[:4]}***" if x_api_key else "<missing>"
    logger.warning("api_key_mismatch api_key_preview=%s", preview)
    raise HTTPException(
        status_code=401,
        detail={"message": "Invalid API key", "error_code": "invalid_api_key"},
    )


def require_permission(*permissions: str) -> Callable[..., Principal]:
    """Dependency returning the caller once it holds every given permission."""

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        missing = principal.missing_permissions(permissions)
        if missing:
            logger.warning(
                "permission_denied user_id=%s missing=%s",
                principal.user_id,
                ",".join(missing),
            )
            raise HTTPException(
                status_code=403,
                detail={
                    "message": "Missing required permissions",
                    "missing_permissions": missing,
                    "error_code": "permission_denied",
                },
            )
        return principal

    return dependency
