"""
Exception hierarchy for the job queue.

OffloadError
├── EnqueueFailure     - store unreachable or rejected the write at submit time
├── OwnershipMismatch  - finalize attempted by a worker that no longer owns the job
├── JobNotFound        - the job record does not exist (removed or expired)
├── HandlerFailure     - the handler raised while processing the job
├── TimedOutWait       - the producer's wait expired, the job itself is untouched
└── AbandonedJob       - the job was swept to timed_out after its worker went silent
"""

from typing import Any


class OffloadError(Exception):
    """Base class for all job queue exceptions."""


class EnqueueFailure(OffloadError):
    """
    Raised when a job could not be persisted.

    The job never exists in the store when this is raised.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class OwnershipMismatch(OffloadError):
    """Raised when a worker finalizes a job it does not hold in the active state."""

    def __init__(self, job_id: str, worker_id: str) -> None:
        self.job_id = job_id
        self.worker_id = worker_id
        super().__init__(f"Worker {worker_id!r} does not own active job {job_id!r}")


class JobNotFound(OffloadError):
    """Raised when a job id is not present in the store."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id!r} not found")


class HandlerFailure(OffloadError):
    """
    The job's handler raised while processing.

    Attributes
    ----------
    job_id : str
    error : JobError
        Structured failure recorded on the job.
    """

    def __init__(self, job_id: str, error: Any) -> None:
        self.job_id = job_id
        self.error = error
        super().__init__(f"Job {job_id!r} failed: {error.type}: {error.message}")


class TimedOutWait(OffloadError):
    """The producer's wait expired. The outcome of the job is unknown."""

    def __init__(self, job_id: str, timeout: float) -> None:
        self.job_id = job_id
        self.timeout = timeout
        super().__init__(f"Gave up waiting for job {job_id!r} after {timeout}s")


class AbandonedJob(OffloadError):
    """The job was swept to timed_out because its worker stopped responding."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id!r} was abandoned by its worker")
