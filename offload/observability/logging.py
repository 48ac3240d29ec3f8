"""
Structured logging.

Modules log through ``logging.getLogger(__name__)`` with ``extra=`` fields.
``setup_logging`` renders those records with structlog, adding the bound
job context and the current trace ids.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from offload.config import get_settings

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("redis", "opentelemetry")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the trace and span ids of the current span, if one is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def setup_logging(process_name: str | None = None) -> None:
    """
    Route stdlib logging through structlog for a worker, reaper or pool process.

    Args:
        process_name: Bound to every record of this process.
    """
    settings = get_settings()

    chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    renderer: Any
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    if process_name:
        structlog.contextvars.bind_contextvars(process=process_name)


@contextmanager
def job_context(job_id: str, job_type: str, worker_id: str) -> Iterator[None]:
    """
    Tag every record logged in this block with the job being processed.

    The context lives in the current asyncio task, so concurrent worker
    slots never see each other's job.
    """
    with structlog.contextvars.bound_contextvars(
        job_id=job_id,
        job_type=job_type,
        worker_id=worker_id,
    ):
        yield
