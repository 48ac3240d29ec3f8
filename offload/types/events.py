"""
Event type definitions for job state notifications.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from offload.constants import JobState
from offload.types.job import utcnow


class JobEvent(BaseModel):
    """
    Event received when a job enters a new state.

    The store publishes the bare state name on the job's channel; the job id
    is the last segment of the channel name.
    """

    job_id: str
    state: JobState
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @classmethod
    def from_message(cls, message: dict[str, Any] | None) -> "JobEvent | None":
        """
        Parse a pub/sub message.

        Accepts plain and pattern subscription messages. Returns None for
        subscribe confirmations and anything that is not a state notification.
        """
        if message is None or message.get("type") not in ("message", "pmessage"):
            return None
        channel = message["channel"]
        data = message["data"]
        try:
            state = JobState(data)
        except ValueError:
            return None
        return cls(job_id=channel.rsplit(":", 1)[-1], state=state)
