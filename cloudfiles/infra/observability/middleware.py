import json
import logging
import re
import time
import uuid
from typing import Any

from fastapi import Request
from starlette.concurrency import iterate_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from cloudfiles.common.config import get_settings
from cloudfiles.infra.observability.metrics import LATENCY, REQUESTS

logger = logging.getLogger("http")

MAX_TRACED_BODY_CHARS = 2048
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "api_key",
        "x-api-key",
        "authorization",
        "aws_secret_access_key",
    }
)
SENSITIVE_TEXT_PATTERNS = (
    re.compile(r"(?i)authorization\s*:\s*bearer\s+[A-Za-z0-9\-_.]+"),
    re.compile(
        r"(?i)(token|secret|api_key|x-api-key|password|authorization)\s*[:=]\s*[^\s]+"
    ),
)


def mask_value(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {
            k: "***" if isinstance(k, str) and k.lower() in SENSITIVE_KEYS else mask_value(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [mask_value(item) for item in obj]
    return obj


def mask_text(text: str) -> str:
    for pattern in SENSITIVE_TEXT_PATTERNS:
        text = pattern.sub(
            lambda m: re.split(r"[:=]", m.group(0), maxsplit=1)[0] + ": ***", text
        )
    return text


def describe_body(raw: bytes, content_type: str | None) -> str | None:
    """Render a request/response body for trace logs, masked and truncated."""
    if not raw:
        return None
    if content_type and not (
        content_type.startswith("application/json") or content_type.startswith("text/")
    ):
        # file payloads are logged by size only
        return f"<{len(raw)} bytes {content_type}>"

    decoded = raw.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(decoded)
    except ValueError:
        rendered = mask_text(decoded)
    else:
        rendered = json.dumps(mask_value(parsed), ensure_ascii=False)
    if len(rendered) > MAX_TRACED_BODY_CHARS:
        rendered = rendered[:MAX_TRACED_BODY_CHARS] + "...<truncated>"
    return rendered


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None and hasattr(route, "path"):
        return route.path
    return request.url.path


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


async def _buffer_request(request: Request) -> bytes:
    """Read the body and replay it to the downstream app."""
    raw = await request.body()

    async def receive():
        return {"type": "http.request", "body": raw, "more_body": False}

    request._receive = receive
    return raw


async def _buffer_response(response) -> bytes:
    raw = b"".join([chunk async for chunk in response.body_iterator])
    response.body_iterator = iterate_in_threadpool(iter([raw]))
    return raw


class MetricsMiddleware(BaseHTTPMiddleware):
    """Prometheus metrics, request-id propagation and one log line per request.

    With ``TRACE_HTTP`` on, masked request and response bodies are attached to
    the log line; file payloads are summarized by size.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        trace_http = get_settings().TRACE_HTTP
        fields: dict[str, Any] = {
            "method": request.method,
            "query": request.url.query,
            "request_id": request_id,
            "user_id": request.headers.get("X-User-Id") or "<missing>",
            "client_ip": _client_ip(request),
            "user_agent": request.headers.get("User-Agent"),
        }
        if trace_http:
            fields["request_body"] = describe_body(
                await _buffer_request(request), request.headers.get("Content-Type")
            )

        try:
            response = await call_next(request)
        except Exception as exc:
            fields.update(
                route=request.url.path,
                status=500,
                duration_ms=round((time.perf_counter() - start) * 1000, 3),
                exception=repr(exc),
            )
            logger.exception(
                "request_error method=%s route=%s status=500 request_id=%s",
                request.method,
                request.url.path,
                request_id,
                extra={"extra": fields},
            )
            raise

        elapsed = time.perf_counter() - start
        route = _route_template(request)
        REQUESTS.labels(request.method, route, str(response.status_code)).inc()
        LATENCY.labels(request.method, route).observe(elapsed)
        response.headers.setdefault("X-Request-Id", request_id)

        if trace_http:
            fields["response_body"] = describe_body(
                await _buffer_response(response), response.headers.get("content-type")
            )
        fields.update(
            route=route,
            status=response.status_code,
            duration_ms=round(elapsed * 1000, 3),
        )
        logger.log(
            _level_for(response.status_code),
            "request method=%s route=%s status=%s duration_ms=%.3f request_id=%s user_id=%s",
            request.method,
            route,
            response.status_code,
            fields["duration_ms"],
            request_id,
            fields["user_id"],
            extra={"extra": fields},
        )
        return response
