"""
Job-related type definitions and the store record contract.
"""

import json
import traceback as tb
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from offload.constants import (
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
    JobState,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch(value: datetime) -> str:
    """Encode a datetime as the epoch-seconds string kept in the store."""
    return f"{value.timestamp():.6f}"


def from_epoch(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


class JobError(BaseModel):
    """
    Structured failure reason recorded on a failed job.
    """

    type: str
    message: str
    traceback: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "JobError":
        """Capture an exception raised by a handler."""
        return cls(
            type=type(exc).__name__,
            message=str(exc),
            traceback="".join(tb.format_exception(exc)),
        )


class Job(BaseModel):
    """
    A unit of work.

    The record is persisted as a flat hash of strings, see
    ``to_record``/``from_record``. ``result`` and ``error`` are mutually
    exclusive and only populated in the matching terminal state.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=int(DEFAULT_PRIORITY), ge=MIN_PRIORITY, le=MAX_PRIORITY)
    state: JobState = JobState.CREATED
    result: Any = None
    error: JobError | None = None
    owner: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    auto_cleanup: bool = False
    ttl: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "Job":
        if self.error is not None and self.state != JobState.FAILED:
            raise ValueError("error is only set on failed jobs")
        if self.result is not None and self.state != JobState.COMPLETED:
            raise ValueError("result is only set on completed jobs")
        if self.owner is not None and self.state != JobState.ACTIVE:
            raise ValueError("owner is only set on active jobs")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def duration_seconds(self) -> float | None:
        """Execution time, once the job has finished."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_record(self) -> dict[str, str]:
        """Flatten into the string mapping stored in the job hash."""
        record = {
            "id": self.id,
            "type": self.type,
            "payload": json.dumps(self.payload),
            "priority": str(self.priority),
            "state": self.state.value,
            "created_at": to_epoch(self.created_at),
            "auto_cleanup": "1" if self.auto_cleanup else "0",
            "ttl": str(self.ttl or 0),
        }
        if self.state == JobState.COMPLETED:
            record["result"] = json.dumps(self.result)
        if self.error is not None:
            record["error"] = self.error.model_dump_json()
        if self.owner is not None:
            record["owner"] = self.owner
        if self.started_at is not None:
            record["started_at"] = to_epoch(self.started_at)
        if self.finished_at is not None:
            record["finished_at"] = to_epoch(self.finished_at)
        return record

    @classmethod
    def from_record(cls, record: dict[str, str]) -> "Job":
        """Rebuild a job from its stored hash."""
        state = JobState(record["state"])
        raw_result = record.get("result")
        raw_error = record.get("error")
        ttl = int(record.get("ttl") or 0)
        return cls(
            id=record["id"],
            type=record["type"],
            payload=json.loads(record.get("payload") or "{}"),
            priority=int(record["priority"]),
            state=state,
            result=json.loads(raw_result) if raw_result is not None else None,
            error=JobError.model_validate_json(raw_error) if raw_error else None,
            owner=record.get("owner") or None,
            created_at=from_epoch(record["created_at"]),
            started_at=from_epoch(record.get("started_at")),
            finished_at=from_epoch(record.get("finished_at")),
            auto_cleanup=record.get("auto_cleanup") == "1",
            ttl=ttl or None,
        )


class OutcomeStatus(StrEnum):
    """What a producer observed when waiting on a job."""

    COMPLETED = "completed"
    FAILED = "failed"
    # The job itself was swept after its worker went silent
    ABANDONED = "abandoned"
    # Local wait expired; the job may still finish later
    TIMED_OUT = "timed_out"


class JobOutcome(BaseModel):
    """
    Result of waiting on a job.

    ``TIMED_OUT`` means the wait expired and the outcome is unknown. It is
    not a job failure.
    """

    job_id: str
    status: OutcomeStatus
    result: Any = None
    error: JobError | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobOutcome":
        """Outcome for a job that reached a terminal state."""
        match job.state:
            case JobState.COMPLETED:
                return cls(job_id=job.id, status=OutcomeStatus.COMPLETED, result=job.result)
            case JobState.FAILED:
                return cls(job_id=job.id, status=OutcomeStatus.FAILED, error=job.error)
            case JobState.TIMED_OUT:
                return cls(job_id=job.id, status=OutcomeStatus.ABANDONED)
            case _:
                raise ValueError(f"Job {job.id} is not terminal: {job.state}")

    @classmethod
    def wait_expired(cls, job_id: str) -> "JobOutcome":
        return cls(job_id=job_id, status=OutcomeStatus.TIMED_OUT)


class SubmitOptions(BaseModel):
    """
    Per-job submission options.

    auto_cleanup: delete the record once a producer observes the terminal
        state. Records nobody observes expire after the cleanup grace period.
    ttl: seconds a terminal record is kept; overrides the grace period.
    """

    auto_cleanup: bool = False
    ttl: int | None = Field(default=None, gt=0)
