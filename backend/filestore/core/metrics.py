"""Prometheus metrics: uploads by outcome, bytes stored, deletes, backend latency."""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

UPLOAD_TOTAL = Counter(
    "storage_uploads_total",
    "Upload attempts by final state",
    ["backend", "result"],  # committed | rejected | failed | rolled_back
)
UPLOAD_BYTES = Counter(
    "storage_upload_bytes_total",
    "Bytes committed to storage",
    ["backend"],
)
DELETE_TOTAL = Counter(
    "storage_deletes_total",
    "Backend delete calls",
    ["backend", "result"],  # deleted | absent | error
)
BACKEND_LATENCY = Histogram(
    "storage_backend_duration_seconds",
    "Backend operation latency",
    ["backend", "operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def record_upload(backend: str, result: str, byte_size: int = 0) -> None:
    UPLOAD_TOTAL.labels(backend=backend, result=result).inc()
    if result == "committed" and byte_size:
        UPLOAD_BYTES.labels(backend=backend).inc(byte_size)


def record_delete(backend: str, result: str) -> None:
    DELETE_TOTAL.labels(backend=backend, result=result).inc()


def observe_backend(backend: str, operation: str, seconds: float) -> None:
    BACKEND_LATENCY.labels(backend=backend, operation=operation).observe(seconds)


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
