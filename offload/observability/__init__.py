"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from offload.observability.logging import job_context, setup_logging
from offload.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    start_metrics_server,
)
from offload.observability.tracing import get_tracer, instrument_redis, setup_tracing

__all__ = [
    "setup_logging",
    "job_context",
    "setup_metrics",
    "get_metrics",
    "start_metrics_server",
    "MetricsCollector",
    "setup_tracing",
    "instrument_redis",
    "get_tracer",
]
