from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUESTS_TOTAL = Counter(
    "total_requests",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY_SECONDS = Histogram(
    "request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
STRIPE_API_LATENCY_SECONDS = Histogram(
    "stripe_api_latency_seconds",
    "Stripe REST API call latency in seconds",
    labelnames=("operation",),
)
STRIPE_WEBHOOK_EVENTS_TOTAL = Counter(
    "stripe_webhook_events_total",
    "Stripe webhook deliveries by event type and outcome",
    labelnames=("event_type", "outcome"),
)


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def record_webhook_event(event_type: str, outcome: str) -> None:
    STRIPE_WEBHOOK_EVENTS_TOTAL.labels(event_type=event_type, outcome=outcome).inc()


@contextmanager
def measure_stripe_call(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        STRIPE_API_LATENCY_SECONDS.labels(operation=operation).observe(perf_counter() - started_at)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
