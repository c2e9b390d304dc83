from fastapi import FastAPI
from fastapi.testclient import TestClient

from cloudfiles.infra.observability.metrics import metrics_app
from cloudfiles.infra.observability.middleware import MetricsMiddleware


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(MetricsMiddleware)

    @app.get("/api/v1/buckets/{bucket}/files")
    def list_bucket(bucket: str):
        return {"bucket": bucket}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.mount("/metrics", metrics_app)
    return app


def test_metrics_route_template_label():
    client = TestClient(build_app())
    resp = client.get("/api/v1/buckets/reports/files")
    assert resp.status_code == 200

    # the label is the template, not the concrete bucket name
    m = client.get("/metrics")
    assert m.status_code == 200
    assert "http_requests_total" in m.text
    assert 'route="/api/v1/buckets/{bucket}/files"' in m.text
    assert 'route="/api/v1/buckets/reports/files"' not in m.text


def test_latency_metric_present():
    client = TestClient(build_app())
    client.get("/api/v1/buckets/logs/files")
    m = client.get("/metrics")
    assert "http_request_duration_seconds" in m.text


def test_storage_operation_metric_exposed(client):
    client.put(
        "/api/v1/files",
        params={"id": "s3://bucket/metrics.txt"},
        content=b"x",
        headers={"Content-Type": "text/plain"},
    )

    m = client.get("/metrics")
    assert m.status_code == 200
    assert 'storage_operations_total{operation="save",outcome="ok"}' in m.text


def test_request_id_propagation():
    client = TestClient(build_app())

    # auto-generate when missing
    rid1 = client.get("/health").headers.get("X-Request-Id")
    assert rid1 is not None and len(rid1) > 0

    # echo when provided
    rid = "req-abc-123"
    r2 = client.get("/health", headers={"X-Request-Id": rid})
    assert r2.headers.get("X-Request-Id") == rid
