from prometheus_client import Counter, Histogram, make_asgi_app

# Route label uses the route template (e.g. /api/v1/files/metadata) to keep cardinality low
REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency in seconds",
    ["method", "route"],
)

# outcome: ok | not_found | error
STORAGE_OPERATIONS = Counter(
    "storage_operations_total",
    "File storage operations by outcome",
    ["operation", "outcome"],
)


def record_storage_operation(operation: str, outcome: str) -> None:
    STORAGE_OPERATIONS.labels(operation, outcome).inc()


# /metrics ASGI app
metrics_app = make_asgi_app()
