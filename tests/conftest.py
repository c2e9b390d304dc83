from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient

from cloudfiles.api.v1.deps import get_file_storage_service
from cloudfiles.app.services.file_storage_service import CloudFileStorageService
from cloudfiles.common.config import get_settings
from cloudfiles.main import create_app
from tests.services.mock_storage import MockStorageClient

# settings read by create_app() and the request dependencies
MANAGED_ENV_KEYS = (
    "API_KEY_ENABLED",
    "API_KEY",
    "AUTH_ENABLED",
    "AUTH_ALLOW_ANONYMOUS",
    "AUTH_TOKEN_SECRET",
    "AUTH_TOKEN_ALGORITHM",
    "AUTH_DEFAULT_PERMISSIONS",
    "TRACE_HTTP",
    "ENABLE_METRICS",
    "STORAGE_MAX_UPLOAD_BYTES",
    "STORAGE_LIST_CONCURRENCY",
    "S3_ACCESS_KEY_ID",
    "S3_SECRET_ACCESS_KEY",
)


@pytest.fixture(autouse=True)
def isolated_settings():
    saved = {key: os.environ.pop(key) for key in MANAGED_ENV_KEYS if key in os.environ}
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    for key in MANAGED_ENV_KEYS:
        os.environ.pop(key, None)
    os.environ.update(saved)
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def mock_storage():
    return MockStorageClient()


@pytest.fixture()
def make_client(mock_storage):
    """Build a TestClient after the test has adjusted its environment."""

    def factory() -> TestClient:
        get_settings.cache_clear()  # type: ignore[attr-defined]
        app = create_app()
        app.dependency_overrides[get_file_storage_service] = (
            lambda: CloudFileStorageService(
                storage_client=mock_storage, settings=get_settings()
            )
        )
        return TestClient(app)

    return factory


@pytest.fixture()
def client(make_client):
    return make_client()
