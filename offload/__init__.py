"""
offload

A Redis-backed job queue for moving CPU-bound work out of request-serving
processes: prioritized per-type queues, exclusive claims with
ownership-checked completion, producer-side waiting through pub/sub, a
sweep for abandoned jobs, and a scaling controller for worker processes.
"""

__version__ = "1.0.0"

from offload.constants import JobPriority, JobState
from offload.errors import (
    AbandonedJob,
    EnqueueFailure,
    HandlerFailure,
    JobNotFound,
    OffloadError,
    OwnershipMismatch,
    TimedOutWait,
)
from offload.producer import JobHandle, Producer
from offload.queue import QueueEngine
from offload.types import Job, JobError, JobOutcome, OutcomeStatus, SubmitOptions
from offload.worker import HandlerRegistry, WorkerRuntime, register_handler

__all__ = [
    "__version__",
    "JobPriority",
    "JobState",
    "Job",
    "JobError",
    "JobOutcome",
    "OutcomeStatus",
    "SubmitOptions",
    "QueueEngine",
    "Producer",
    "JobHandle",
    "WorkerRuntime",
    "HandlerRegistry",
    "register_handler",
    "OffloadError",
    "EnqueueFailure",
    "OwnershipMismatch",
    "JobNotFound",
    "HandlerFailure",
    "TimedOutWait",
    "AbandonedJob",
]
