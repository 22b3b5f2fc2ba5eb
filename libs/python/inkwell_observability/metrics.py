"""Prometheus metrics helpers and middleware."""

from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Optional, Tuple

from fastapi import FastAPI, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from inkwell_providers.base import ProviderResponse


_HTTP_REQUEST_COUNT = Counter(
    "inkwell_http_requests_total",
    "Total HTTP requests processed by service",
    labelnames=("service", "method", "route", "status"),
)

_HTTP_REQUEST_LATENCY = Histogram(
    "inkwell_http_request_duration_seconds",
    "Latency of HTTP requests",
    labelnames=("service", "method", "route"),
)

_JOB_DURATION = Histogram(
    "inkwell_job_duration_seconds",
    "Duration of generation jobs",
    labelnames=("service", "job_type"),
)

_JOB_COUNTER = Counter(
    "inkwell_jobs_total",
    "Count of generation jobs by outcome",
    labelnames=("service", "job_type", "status"),
)

_LLM_TOKENS = Counter(
    "inkwell_llm_tokens_total",
    "Token usage by provider and generation step",
    labelnames=("service", "step", "provider", "token_type"),
)

_LLM_LATENCY = Histogram(
    "inkwell_llm_latency_seconds",
    "Latency of generation backend calls",
    labelnames=("service", "step", "provider"),
)

_CHECKOUTS = Counter(
    "inkwell_checkouts_total",
    "Checkout attempts by book type and outcome",
    labelnames=("book_type", "status"),
)

_FULFILLMENTS = Counter(
    "inkwell_fulfillment_events_total",
    "Payment confirmation events by handling outcome",
    labelnames=("outcome",),
)

_RECONCILIATIONS = Counter(
    "inkwell_page_reconciliations_total",
    "Interior page-count reconciliations",
    labelnames=("padded", "fallback"),
)

_WORKER_HEARTBEAT = Gauge(
    "inkwell_worker_heartbeat_timestamp",
    "Unix timestamp for the latest worker heartbeat",
    labelnames=("service",),
)

_STARTUP_FLAGS: set[Tuple[str, int]] = set()


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for FastAPI services."""

    def __init__(self, app: FastAPI, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start

        route_template = request.url.path
        route = request.scope.get("route")
        if route and getattr(route, "path", None):
            route_template = route.path  # type: ignore[assignment]

        method = request.method
        status = getattr(response, "status_code", 500)

        _HTTP_REQUEST_COUNT.labels(self.service_name, method, route_template, str(status)).inc()
        _HTTP_REQUEST_LATENCY.labels(self.service_name, method, route_template).observe(elapsed)
        return response


def setup_fastapi_metrics(app: FastAPI, service_name: str, endpoint: str = "/metrics") -> None:
    """Register Prometheus middleware and metrics endpoint for a FastAPI app."""

    if getattr(app.state, "metrics_configured", False):
        return

    app.add_middleware(PrometheusMiddleware, service_name=service_name)

    @app.get(endpoint, include_in_schema=False)
    async def _metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_configured = True


def start_metrics_server(port: int, addr: str = "0.0.0.0") -> None:
    """Expose Prometheus metrics on a standalone HTTP server."""

    key = (addr, port)
    if key in _STARTUP_FLAGS:
        return
    start_http_server(port, addr=addr)
    _STARTUP_FLAGS.add(key)


def observe_job(
    job_type: str,
    duration_seconds: float,
    *,
    service_name: str,
    status: str = "success",
) -> None:
    """Record duration and outcome of one generation job."""

    _JOB_DURATION.labels(service_name, job_type).observe(max(duration_seconds, 0.0))
    _JOB_COUNTER.labels(service_name, job_type, status).inc()


def observe_provider_response(
    *,
    step: str,
    provider: str,
    service_name: str,
    response: Optional["ProviderResponse"],
) -> None:
    """Capture token usage and latency from provider responses."""

    if response is None:
        return

    prompt_tokens = getattr(response, "prompt_tokens", None)
    if isinstance(prompt_tokens, (int, float)) and prompt_tokens >= 0:
        _LLM_TOKENS.labels(service_name, step, provider, "prompt").inc(prompt_tokens)

    completion_tokens = getattr(response, "completion_tokens", None)
    if isinstance(completion_tokens, (int, float)) and completion_tokens >= 0:
        _LLM_TOKENS.labels(service_name, step, provider, "completion").inc(completion_tokens)

    latency_ms = getattr(response, "latency_ms", None)
    if isinstance(latency_ms, (int, float)) and latency_ms >= 0:
        _LLM_LATENCY.labels(service_name, step, provider).observe(latency_ms / 1000)


def observe_checkout(book_type: str, status: str) -> None:
    _CHECKOUTS.labels(book_type, status).inc()


def observe_fulfillment(outcome: str) -> None:
    _FULFILLMENTS.labels(outcome).inc()


def record_reconciliation(*, padded: bool, fallback: bool) -> None:
    _RECONCILIATIONS.labels(str(padded).lower(), str(fallback).lower()).inc()


def record_worker_heartbeat(service_name: str) -> None:
    """Update the heartbeat gauge for long-running worker processes."""

    _WORKER_HEARTBEAT.labels(service_name).set_to_current_time()
