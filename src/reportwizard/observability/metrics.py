from __future__ import annotations

"""Prometheus metrics for the report wizard backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for outbound LLM and CRM calls.
"""

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds); LLM-backed routes run long
REQUEST_LATENCY = Histogram(
    "reportwizard_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

LLM_CALLS = Counter(
    "reportwizard_llm_calls_total",
    "LLM chat-completion calls by purpose and outcome",
    labelnames=("purpose", "outcome"),
)

CRM_CALLS = Counter(
    "reportwizard_crm_calls_total",
    "CRM metadata calls by endpoint and outcome",
    labelnames=("endpoint", "outcome"),
)


def sanitize_path(path: str) -> str:
    """Reduce a request path to its first two static segments.

    ``/api/story/choose`` -> ``/api/story``; ``/story/start`` -> ``/story/start``.
    """
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    return "/" + "/".join(segs[:2])


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.endswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
