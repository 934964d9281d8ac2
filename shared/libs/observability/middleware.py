"""
FastAPI middleware for Prometheus metrics collection.
"""

import re
import time
from typing import Awaitable, Callable

from fastapi import Request, Response

from shared.libs.observability.metrics import (
    ACTIVE_REQUESTS,
    REQUEST_COUNT,
    REQUEST_DURATION,
    EXCEPTION_COUNT,
)

UUID_SEGMENT = re.compile(r"/[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}")
NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")

UNTRACKED_PATHS = {"/metrics", "/health"}


def normalize_path(path: str) -> str:
    """Collapse ids in a path so label cardinality stays bounded."""
    path = UUID_SEGMENT.sub("/{id}", path)
    return NUMERIC_SEGMENT.sub("/{id}", path)


async def metrics_middleware(
    request: Request, call_next: Callable[..., Awaitable[Response]]
) -> Response:
    """
    Middleware to collect HTTP request metrics.

    Tracks request count, duration, in-flight requests and exceptions by
    type. Scrape and probe endpoints are passed through untracked.
    """
    if request.url.path in UNTRACKED_PATHS:
        return await call_next(request)

    method = request.method
    path = normalize_path(request.url.path)

    ACTIVE_REQUESTS.labels(method=method, endpoint=path).inc()
    start_time = time.time()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as e:
        EXCEPTION_COUNT.labels(
            exception_type=type(e).__name__, method=method, endpoint=path
        ).inc()
        raise
    finally:
        duration = time.time() - start_time
        ACTIVE_REQUESTS.labels(method=method, endpoint=path).dec()
        REQUEST_COUNT.labels(
            method=method, endpoint=path, status=str(status_code)
        ).inc()
        REQUEST_DURATION.labels(method=method, endpoint=path).observe(duration)

    return response
