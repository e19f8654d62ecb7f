"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_bbb_call(): Context manager recording outbound BBB API calls
- init_sentry(): Initialize Sentry with tenant-aware before_send callback
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code", "tenant"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "tenant"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── BBB Metrics ──────────────────────────────────────────────────────────────

bbb_api_calls_total = Counter(
    "bbb_api_calls_total",
    "Total outbound BigBlueButton API calls",
    ["action", "outcome"],
)

bbb_api_call_duration_seconds = Histogram(
    "bbb_api_call_duration_seconds",
    "BigBlueButton API call duration in seconds",
    ["action"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

meeting_events_total = Counter(
    "meeting_events_total",
    "Meeting events emitted, by event name",
    ["event", "tenant"],
)

_UNTRACKED_PATHS = frozenset({"/metrics", "/health", "/health/ready"})


# ── Metrics Middleware ───────────────────────────────────────────────────────


def _route_template(request: Request) -> str:
    # Meeting and group ids appear in paths; label by template to bound cardinality
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency per route template and tenant.

    /metrics and the health checks are not counted.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _UNTRACKED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        tenant = request.headers.get("X-Tenant-ID", "unknown")
        endpoint = _route_template(request)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
            tenant=tenant,
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
            tenant=tenant,
        ).observe(duration)

        return response


# ── BBB Call Tracking ────────────────────────────────────────────────────────


@contextmanager
def track_bbb_call(action: str) -> Iterator[None]:
    """Record count, outcome and duration of one outbound BBB call.

    Usage:
        with track_bbb_call("getMeetingInfo"):
            response = await client.get(url)
    """
    start_time = time.perf_counter()
    outcome = "success"
    try:
        yield
    except Exception:
        outcome = "error"
        raise
    finally:
        bbb_api_calls_total.labels(action=action, outcome=outcome).inc()
        bbb_api_call_duration_seconds.labels(action=action).observe(
            time.perf_counter() - start_time
        )


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with tenant-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Add tenant context to Sentry events."""
        from src.bbb_meetings.core.tenant import get_current_tenant

        try:
            ctx = get_current_tenant()
        except RuntimeError:
            return event
        event.setdefault("tags", {})["tenant"] = ctx.alias
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
