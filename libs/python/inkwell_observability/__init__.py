"""Shared observability helpers used across Inkwell services."""

from .logging import setup_logging, log_context
from .metrics import (
    observe_checkout,
    observe_fulfillment,
    observe_job,
    observe_provider_response,
    record_reconciliation,
    record_worker_heartbeat,
    setup_fastapi_metrics,
    start_metrics_server,
)

__all__ = [
    "setup_logging",
    "log_context",
    "setup_fastapi_metrics",
    "start_metrics_server",
    "observe_checkout",
    "observe_fulfillment",
    "observe_job",
    "observe_provider_response",
    "record_reconciliation",
    "record_worker_heartbeat",
]
