"""
Type definitions for the job queue.
"""

from offload.types.events import JobEvent
from offload.types.job import (
    Job,
    JobError,
    JobOutcome,
    OutcomeStatus,
    SubmitOptions,
)

__all__ = [
    # Job types
    "Job",
    "JobError",
    "JobOutcome",
    "OutcomeStatus",
    "SubmitOptions",
    # Event types
    "JobEvent",
]
