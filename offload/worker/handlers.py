"""
Job handler registry and built-in handlers.

A handler is a function of the job payload to a JSON-serializable result.
It signals failure by raising. Handlers may be plain functions, which run
in an executor, or coroutine functions, which run on the event loop.

Job handlers must be idempotent - a job may run again as a new submission
after its worker crashed.
"""

import importlib
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[dict[str, Any]], Any]


class HandlerRegistry:
    """Maps job types to handlers."""

    def __init__(self):
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> JobHandler:
        """
        Associate a handler with a job type, replacing any previous one.

        Args:
            job_type: The job type this handler processes.
            handler: ``payload -> result``; raise to fail the job.

        Returns:
            The handler, so this can back a decorator.
        """
        if not job_type:
            raise ValueError("job_type must not be empty")
        self._handlers[job_type] = handler
        logger.info(f"Registered handler for job type: {job_type}")
        return handler

    def get(self, job_type: str) -> JobHandler | None:
        return self._handlers.get(job_type)

    def job_types(self) -> list[str]:
        """List all registered job types."""
        return list(self._handlers.keys())

    def is_async(self, job_type: str) -> bool:
        return inspect.iscoroutinefunction(self._handlers.get(job_type))

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


# Default registry used by worker processes
default_registry = HandlerRegistry()


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a handler on the default registry.

    Example:
        @register_handler("render_thumbnail")
        def render_thumbnail(payload: dict) -> dict:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        return default_registry.register(job_type, handler)
    return decorator


def load_handler_modules(modules: list[str]) -> None:
    """
    Import modules that register handlers as a side effect.

    Worker processes call this on startup with ``worker_handler_modules``.
    """
    for name in modules:
        importlib.import_module(name)
        logger.info(f"Loaded handler module: {name}")


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
def handle_echo(payload: dict[str, Any]) -> dict[str, Any]:
    """Return the payload unchanged."""
    return {"echo": payload}


@register_handler("square")
def handle_square(payload: dict[str, Any]) -> int:
    """
    CPU-bound example.

    Payload should contain:
    - n: integer to square
    """
    n = payload["n"]
    if not isinstance(n, int):
        raise TypeError(f"n must be an integer, got {type(n).__name__}")
    return n * n


@register_handler("sleep")
def handle_sleep(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Block the executing thread, standing in for a long computation.

    Payload should contain:
    - duration_seconds: How long to sleep
    """
    duration = payload.get("duration_seconds", 1)
    time.sleep(duration)
    return {"slept_for": duration}


@register_handler("fail")
def handle_fail(payload: dict[str, Any]) -> None:
    """Always raise, for exercising the failure path."""
    raise RuntimeError(payload.get("message", "Intentional failure"))
