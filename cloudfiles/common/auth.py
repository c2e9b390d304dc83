"""Caller identification for the files API.

With ``AUTH_ENABLED`` off, the owner of an upload is whatever ``X-User-Id``
says and every caller holds ``AUTH_DEFAULT_PERMISSIONS``. With it on, callers
present a bearer JWT: its ``sub`` claim is the owner, and its ``permissions``
and ``scope`` claims extend the defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import jwt
from jwt import PyJWTError

from cloudfiles.common.config import Settings

logger = logging.getLogger("auth")

FILES_READ = "files:read"
FILES_WRITE = "files:write"


class AuthenticationError(Exception):
    """Raised when a caller cannot be identified."""


def permission_matches(granted: str, required: str) -> bool:
    if granted in ("*", required):
        return True
    namespace, sep, _ = required.partition(":")
    return bool(sep) and granted == f"{namespace}:*"


@dataclass(frozen=True)
class Principal:
    user_id: str | None
    permissions: frozenset[str]
    source: str
    claims: Mapping[str, Any] = field(default_factory=dict)

    def has_permission(self, permission: str) -> bool:
        return any(permission_matches(granted, permission) for granted in self.permissions)

    def missing_permissions(self, permissions: Iterable[str]) -> list[str]:
        return [p for p in permissions if not self.has_permission(p)]


def parse_bearer(header: str | None) -> str | None:
    """Return the token of a ``Bearer <token>`` header, or None when there is none."""
    if header is None or not header.strip():
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise AuthenticationError("Invalid authorization header")
    return token.strip() or None


def _claim_values(claims: Mapping[str, Any], name: str) -> set[str]:
    value = claims.get(name)
    if isinstance(value, str):
        # OAuth "scope" is space separated
        return set(value.split())
    if isinstance(value, (list, tuple)):
        return {str(item) for item in value if str(item)}
    return set()


class Authenticator:
    def __init__(self, settings: Settings):
        self._settings = settings

    def authenticate(
        self,
        authorization_header: str | None,
        fallback_user_id: str | None,
    ) -> Principal:
        if not self._settings.AUTH_ENABLED:
            return self._header_principal(fallback_user_id, source="header")

        token = parse_bearer(authorization_header)
        if token is None:
            if self._settings.AUTH_ALLOW_ANONYMOUS:
                return self._header_principal(fallback_user_id, source="anonymous")
            raise AuthenticationError("Missing bearer token")

        claims = self._decode(token)
        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Token missing 'sub' claim")

        granted = {p for p in self._settings.AUTH_DEFAULT_PERMISSIONS if p}
        granted |= _claim_values(claims, "permissions")
        granted |= _claim_values(claims, "scope")
        return Principal(
            user_id=str(subject),
            permissions=frozenset(granted),
            source="bearer",
            claims=claims,
        )

    def _header_principal(self, user_id: str | None, *, source: str) -> Principal:
        owner = user_id.strip() if user_id else ""
        return Principal(
            user_id=owner or None,
            permissions=frozenset(self._settings.AUTH_DEFAULT_PERMISSIONS or ["*"]),
            source=source,
        )

    def _decode(self, token: str) -> dict[str, Any]:
        settings = self._settings
        if not settings.AUTH_TOKEN_SECRET:
            raise AuthenticationError(
                "Authentication secret is not configured while AUTH_ENABLED is true"
            )
        options: dict[str, Any] = {"algorithms": [settings.AUTH_TOKEN_ALGORITHM]}
        if settings.AUTH_TOKEN_AUDIENCE:
            options["audience"] = settings.AUTH_TOKEN_AUDIENCE
        if settings.AUTH_TOKEN_ISSUER:
            options["issuer"] = settings.AUTH_TOKEN_ISSUER
        if settings.AUTH_TOKEN_LEEWAY:
            options["leeway"] = settings.AUTH_TOKEN_LEEWAY

        try:
            return jwt.decode(token, settings.AUTH_TOKEN_SECRET, **options)
        except PyJWTError as exc:
            logger.debug("token_decode_error reason=%s", exc)
            raise AuthenticationError("Invalid authentication token") from exc
