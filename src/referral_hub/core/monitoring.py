"""Prometheus metrics, Sentry integration, and Salesforce call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_salesforce_call(): Context manager for Salesforce request metrics
- record_sync_outcome(): Counter update for every sync outcome
- set_session_connected(): Gauge for the Salesforce session state
- init_sentry(): Initialize Sentry with sync-aware event tagging
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import sentry_sdk
from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
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

# ── Salesforce Metrics ───────────────────────────────────────────────────────

salesforce_requests_total = Counter(
    "salesforce_requests_total",
    "Total Salesforce API requests",
    ["operation", "status"],
)

salesforce_request_duration_seconds = Histogram(
    "salesforce_request_duration_seconds",
    "Salesforce API request duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

salesforce_session_connected = Gauge(
    "salesforce_session_connected",
    "1 if a Salesforce session is currently established, else 0",
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

record_sync_total = Counter(
    "record_sync_total",
    "Sync outcomes per record kind, mode and action",
    ["kind", "mode", "action", "result"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Records request count and duration per method/endpoint.
    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Route template keeps label cardinality bounded (/v1/patients/{patient_id})
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

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


# ── Salesforce Metrics Helpers ──────────────────────────────────────────────


@asynccontextmanager
async def track_salesforce_call(operation: str) -> AsyncGenerator[None, None]:
    """Context manager that tracks Salesforce call metrics.

    Usage:
        async with track_salesforce_call("query"):
            response = await client.get(...)

    Records duration in a histogram and a success/error request count.
    """
    start_time = time.perf_counter()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time
        salesforce_requests_total.labels(operation=operation, status=status).inc()
        salesforce_request_duration_seconds.labels(operation=operation).observe(duration)


def record_sync_outcome(kind: str, mode: str, action: str, success: bool) -> None:
    """Count one sync outcome."""
    record_sync_total.labels(
        kind=kind,
        mode=mode,
        action=action,
        result="success" if success else "failure",
    ).inc()


def set_session_connected(connected: bool) -> None:
    salesforce_session_connected.set(1 if connected else 0)


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events raised from the sync layer and strip credential payloads."""
        exc_info = hint.get("exc_info")
        if exc_info:
            module = getattr(exc_info[0], "__module__", "") or ""
            if module.startswith("src.referral_hub.sync"):
                event.setdefault("tags", {})["component"] = "salesforce_sync"
        request = event.get("request") or {}
        if str(request.get("url", "")).endswith("/settings/salesforce"):
            request.pop("data", None)
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
