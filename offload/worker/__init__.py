"""
Worker module.
Contains the worker runtime and the handler registry.
"""

from offload.worker.handlers import HandlerRegistry, default_registry, register_handler
from offload.worker.main import WorkerRuntime, run

__all__ = [
    "WorkerRuntime",
    "HandlerRegistry",
    "default_registry",
    "register_handler",
    "run",
]
