import logging

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cloudfiles.api.errors import register_exception_handlers
from cloudfiles.api.v1.deps import require_api_key
from cloudfiles.api.v1.routers.files import router as files_router
from cloudfiles.common.config import Settings, get_settings
from cloudfiles.common.logging import setup_logging
from cloudfiles.infra.observability.metrics import metrics_app
from cloudfiles.infra.observability.middleware import MetricsMiddleware

startup_logger = logging.getLogger("cloudfiles.startup")


def _describe_storage_target(settings: Settings) -> str:
    """One-line, secret-free summary of where files are stored."""
    credentials = "configured" if settings.S3_ACCESS_KEY_ID else "default_chain"
    return ", ".join(
        [
            f"endpoint={settings.S3_ENDPOINT_URL or '<aws default>'}",
            f"region={settings.S3_REGION or '?'}",
            f"addressing_style={settings.S3_ADDRESSING_STYLE}",
            f"scheme={settings.STORAGE_URI_SCHEME}",
            f"credentials={credentials}",
        ]
    )


def _missing_storage_settings(settings: Settings) -> list[str]:
    missing: list[str] = []
    # static keys come in pairs; with neither set boto3 uses its default chain
    if settings.S3_ACCESS_KEY_ID and not settings.S3_SECRET_ACCESS_KEY:
        missing.append("S3_SECRET_ACCESS_KEY")
    elif settings.S3_SECRET_ACCESS_KEY and not settings.S3_ACCESS_KEY_ID:
        missing.append("S3_ACCESS_KEY_ID")
    if settings.AUTH_ENABLED and not settings.AUTH_TOKEN_SECRET:
        missing.append("AUTH_TOKEN_SECRET")
    if settings.API_KEY_ENABLED and not settings.API_KEY:
        missing.append("API_KEY")
    return missing


def _log_storage_configuration(settings: Settings) -> None:
    target = _describe_storage_target(settings)
    missing = _missing_storage_settings(settings)
    if missing:
        startup_logger.warning(
            "Incomplete configuration, requests may fail. [event=config_incomplete] (%s, missing=%s)",
            target,
            ",".join(missing),
        )
    else:
        startup_logger.info(
            "Object storage configured. [event=storage_configured] (%s)", target
        )


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    app = FastAPI(
        title="Cloud Files Service",
        version="v1.0",
        description="Store, fetch, list and delete files kept in S3-compatible object storage.",
    )

    if settings.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-Id", "X-Checksum-Sha256"],
        )

    app.include_router(
        files_router,
        prefix="/api/v1",
        tags=["files"],
        dependencies=[Depends(require_api_key)],
    )
    register_exception_handlers(app)

    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)
        app.mount("/metrics", metrics_app)

    @app.on_event("startup")
    def on_startup() -> None:
        _log_storage_configuration(settings)

    @app.get("/health", tags=["ops"])
    async def health():
        return {"status": "ok"}

    @app.get("/ready", tags=["ops"])
    async def ready():
        missing = _missing_storage_settings(get_settings())
        if missing:
            return {"status": "not_ready", "detail": {"missing_settings": missing}}
        return {"status": "ready"}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("cloudfiles.main:app", host="0.0.0.0", port=8000, reload=True)
