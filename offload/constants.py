"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import IntEnum, StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - CREATED -> QUEUED (enqueued)
    - QUEUED -> ACTIVE (claimed by exactly one worker)
    - ACTIVE -> COMPLETED (handler returned)
    - ACTIVE -> FAILED (handler raised)
    - ACTIVE -> TIMED_OUT (swept after the worker went silent)
    """

    CREATED = "created"
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT}
)


class JobPriority(IntEnum):
    """Named priority levels. Any integer in range is accepted."""

    LOW = 1
    NORMAL = 5
    HIGH = 10
    CRITICAL = 100


# Priority bounds; scores in the queue sorted set stay exact doubles inside them
MIN_PRIORITY = -1000
MAX_PRIORITY = 1000
PRIORITY_SCORE_SPAN = 2**40

# Default values
DEFAULT_PRIORITY = JobPriority.NORMAL

# Metrics names
METRIC_QUEUE_DEPTH = "offload_queue_depth"
METRIC_JOBS_SUBMITTED = "offload_jobs_submitted_total"
METRIC_JOBS_FINISHED = "offload_jobs_finished_total"
METRIC_JOB_DURATION = "offload_job_duration_seconds"
METRIC_JOBS_CLAIMED = "offload_jobs_claimed_total"
METRIC_OWNERSHIP_MISMATCH = "offload_ownership_mismatch_total"
METRIC_JOBS_SWEPT = "offload_jobs_swept_total"
METRIC_WORKER_PROCESSES = "offload_worker_processes"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_FINALIZE_JOB = "finalize_job"
SPAN_SWEEP = "sweep_expired"
