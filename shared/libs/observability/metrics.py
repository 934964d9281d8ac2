"""
Prometheus metrics for the payment-links service.
"""

from fastapi import Response
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# === HTTP METRICS ===
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status",
    ["method", "endpoint", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "Request duration in seconds",
    ["method", "endpoint"],
    # Custom buckets: 10ms to 10s
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests", "Current active HTTP requests", ["method", "endpoint"]
)

EXCEPTION_COUNT = Counter(
    "http_exceptions_total",
    "Total number of exceptions raised by the service",
    ["exception_type", "method", "endpoint"],
)

# === BUSINESS METRICS ===
PAYMENT_LINKS_CREATED = Counter(
    "payment_links_created_total",
    "Payment links successfully created at the gateway and stored",
)

LINK_TRANSITIONS = Counter(
    "payment_link_transitions_total",
    "Applied payment link status transitions",
    ["from_status", "to_status"],
)

WEBHOOK_NOTIFICATIONS = Counter(
    "webhook_notifications_total",
    "Gateway notifications by reconciliation outcome",
    ["outcome"],
)

GATEWAY_REQUEST_DURATION = Histogram(
    "gateway_request_duration_seconds",
    "Mercado Pago API call duration in seconds",
    ["operation", "outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

REALTIME_CHANNELS = Gauge(
    "realtime_channels", "Open server-sent event channels", []
)


def create_metrics_endpoint():
    """Create a /metrics endpoint for Prometheus."""

    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return metrics
