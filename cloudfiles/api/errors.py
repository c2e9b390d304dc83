"""RFC 7807 (``application/problem+json``) rendering for every API error.

Service and storage exceptions raised by the routes are mapped here:

* ``FileValidationError``  -> 400 ``bad_request``
* ``CloudFileNotFoundError`` -> 404 ``not_found``
* ``StorageError`` -> 502 ``storage_unavailable``
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cloudfiles.app.services.base import FileValidationError
from cloudfiles.app.services.file_storage_service import CloudFileNotFoundError
from cloudfiles.infra.storage.client import StorageError

logger = logging.getLogger("http")

PROBLEM_MEDIA_TYPE = "application/problem+json"

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    415: "unsupported_media_type",
    429: "too_many_requests",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}


def normalize_detail(detail: Any) -> tuple[Any, str | None]:
    """Split an ``error_code`` out of a dict detail.

    A dict left holding only ``message`` collapses to that message.
    """
    if not isinstance(detail, dict):
        return detail, None
    code = detail.get("error_code")
    cleaned = {k: v for k, v in detail.items() if k != "error_code"}
    if set(cleaned) == {"message"}:
        cleaned = cleaned["message"]
    return cleaned or None, code if isinstance(code, str) else None


def resolve_error_code(status_code: int, override: str | None = None) -> str:
    if override:
        return override
    if status_code == 422:
        return "validation_error"
    return ERROR_CODE_BY_STATUS.get(status_code, "unknown_error")


def problem_response(
    request: Request,
    status_code: int,
    title: str,
    detail: Any,
    error_code: str,
) -> JSONResponse:
    request_id = request.headers.get("X-Request-Id")
    logger.log(
        logging.WARNING if status_code < 500 else logging.ERROR,
        "http_exception status=%s error_code=%s method=%s path=%s request_id=%s",
        status_code,
        error_code,
        request.method,
        request.url.path,
        request_id,
        extra={
            "extra": {
                "status": status_code,
                "error_code": error_code,
                "detail": detail,
                "method": request.method,
                "route": request.url.path,
                "request_id": request_id,
            }
        },
    )
    return JSONResponse(
        status_code=status_code,
        media_type=PROBLEM_MEDIA_TYPE,
        content={
            "type": "about:blank",
            "title": title,
            "status": status_code,
            "detail": jsonable_encoder(detail),
            "error_code": error_code,
            "instance": str(request.url),
            "request_id": request_id,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail, code = normalize_detail(exc.detail)
        return problem_response(
            request,
            exc.status_code,
            "HTTP Error",
            detail,
            resolve_error_code(exc.status_code, code),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return problem_response(
            request, 422, "Validation Error", exc.errors(), resolve_error_code(422)
        )

    @app.exception_handler(FileValidationError)
    async def file_validation_handler(request: Request, exc: FileValidationError):
        return problem_response(
            request, 400, "Invalid File Request", str(exc), resolve_error_code(400)
        )

    @app.exception_handler(CloudFileNotFoundError)
    async def not_found_handler(request: Request, exc: CloudFileNotFoundError):
        return problem_response(
            request, 404, "File Not Found", str(exc), resolve_error_code(404)
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        return problem_response(
            request, 502, "Storage Unavailable", str(exc), "storage_unavailable"
        )
