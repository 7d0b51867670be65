"""Prometheus metrics, Sentry integration, and fetch tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_fetch(): Context manager recording per-entity fetch outcome and duration
- record_aggregation_fallback(): Counter bump when the assembler substitutes a zero payload
- init_sentry(): Initialize Sentry when a DSN is configured
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Analytics Pipeline Metrics ───────────────────────────────────────────────

analytics_fetch_total = Counter(
    "analytics_fetch_total",
    "Record fetches by entity and outcome",
    ["entity", "outcome"],
)

analytics_fetch_duration_seconds = Histogram(
    "analytics_fetch_duration_seconds",
    "Record fetch duration in seconds",
    ["entity"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)

analytics_aggregation_fallbacks_total = Counter(
    "analytics_aggregation_fallbacks_total",
    "Times the assembler replaced a failed aggregation with a zero payload",
    ["endpoint"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Fetch Metrics Helper ─────────────────────────────────────────────────────


@asynccontextmanager
async def track_fetch(entity: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that records a single entity fetch.

    Usage:
        async with track_fetch("deals") as tracker:
            rows = await source.fetch_rows(...)
            tracker["rows"] = len(rows)

    The outcome label is "ok" unless the body raises, in which case it is
    "timeout" for asyncio.TimeoutError and "error" otherwise. The exception
    is re-raised.
    """
    tracker: dict[str, Any] = {"rows": 0}
    start_time = time.perf_counter()
    outcome = "ok"

    try:
        yield tracker
    except asyncio.TimeoutError:
        outcome = "timeout"
        raise
    except Exception:
        outcome = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time
        analytics_fetch_total.labels(entity=entity, outcome=outcome).inc()
        analytics_fetch_duration_seconds.labels(entity=entity).observe(duration)


def record_aggregation_fallback(endpoint: str) -> None:
    """Count one zero-payload substitution for the given endpoint."""
    analytics_aggregation_fallbacks_total.labels(endpoint=endpoint).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
