import json
import logging
from datetime import datetime, timezone
from logging.config import dictConfig
from typing import Any

# botocore logs signed request headers at DEBUG
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Structured fields are passed as ``extra={"extra": {...}}`` and merged into
    the top level of the object.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_logging_config(level: str = "INFO") -> dict[str, Any]:
    loggers: dict[str, Any] = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}
    # startup banner stays human readable
    loggers["cloudfiles.startup"] = {
        "handlers": ["startup_console"],
        "level": "INFO",
        "propagate": False,
    }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "plain": {"format": "%(levelname)s %(name)s: %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "json"},
            "startup_console": {"class": "logging.StreamHandler", "formatter": "plain"},
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": loggers,
    }


def setup_logging(level: str = "INFO") -> None:
    dictConfig(build_logging_config(level))
