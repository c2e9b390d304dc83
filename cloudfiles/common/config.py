"""Service settings, read from the process environment and an optional ``.env``.

Every field of :class:`Settings` can be set through an environment variable of
the same name; the field's annotation picks the parser.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Mapping

ENV_FILE = Path(".env")

MIB = 1024 * 1024
ADDRESSING_STYLES = frozenset({"path", "virtual", "auto"})
TRUTHY = frozenset({"1", "true", "t", "yes", "y", "on"})


def read_env_file(path: Path | None = None) -> dict[str, str]:
    """Parse ``KEY=value`` lines, skipping blanks and ``#`` comments."""
    path = path or ENV_FILE
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text(encoding="utf-8").splitlines():
        name, sep, raw = line.strip().partition("=")
        name = name.strip()
        if not sep or not name or name.startswith("#"):
            continue
        values[name] = raw.strip().strip("\"'")
    return values


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in TRUTHY


def _parse_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_optional(raw: str) -> str | None:
    return raw.strip() or None


# keyed by the (string) annotation of each Settings field
_PARSERS: dict[str, Callable[[str], Any]] = {
    "bool": _parse_bool,
    "int": lambda raw: int(raw.strip()),
    "str": str.strip,
    "str | None": _parse_optional,
    "list[str]": _parse_csv,
}


@dataclass
class Settings:
    # object storage
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str | None = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    STORAGE_URI_SCHEME: str = "s3"
    STORAGE_MAX_UPLOAD_BYTES: int = 100 * MIB
    STORAGE_LIST_CONCURRENCY: int = 1

    # http surface
    ENABLE_METRICS: bool = True
    API_KEY_ENABLED: bool = False
    API_KEY: str | None = None
    CORS_ENABLED: bool = False
    CORS_ORIGINS: list[str] = field(default_factory=list)
    TRACE_HTTP: bool = False
    LOG_LEVEL: str = "INFO"

    # bearer tokens
    AUTH_ENABLED: bool = False
    AUTH_ALLOW_ANONYMOUS: bool = False
    AUTH_TOKEN_SECRET: str | None = None
    AUTH_TOKEN_ALGORITHM: str = "HS256"
    AUTH_TOKEN_AUDIENCE: str | None = None
    AUTH_TOKEN_ISSUER: str | None = None
    AUTH_TOKEN_LEEWAY: int = 0
    AUTH_DEFAULT_PERMISSIONS: list[str] = field(default_factory=lambda: ["*"])

    def __post_init__(self) -> None:
        self.LOG_LEVEL = self.LOG_LEVEL.strip().upper()
        self.S3_ADDRESSING_STYLE = self.S3_ADDRESSING_STYLE.strip().lower()

        if not self.STORAGE_URI_SCHEME.strip():
            raise ValueError("STORAGE_URI_SCHEME must not be blank.")
        if self.STORAGE_MAX_UPLOAD_BYTES <= 0:
            raise ValueError("STORAGE_MAX_UPLOAD_BYTES must be positive.")
        if self.STORAGE_LIST_CONCURRENCY < 1:
            raise ValueError("STORAGE_LIST_CONCURRENCY must be at least 1.")
        if self.S3_ADDRESSING_STYLE not in ADDRESSING_STYLES:
            raise ValueError(
                f"S3_ADDRESSING_STYLE must be one of {sorted(ADDRESSING_STYLES)}."
            )

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings; process variables win over ``.env`` entries."""
        source = {**read_env_file(), **(os.environ if environ is None else environ)}
        overrides: dict[str, Any] = {}
        for setting in fields(cls):
            raw = source.get(setting.name)
            if raw is not None:
                overrides[setting.name] = _PARSERS[setting.type](raw)
        return cls(**overrides)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
