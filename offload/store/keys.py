"""
Key and channel names used in the store.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class StoreKeys:
    """
    Naming scheme for every key the queue touches.

    All keys share ``prefix`` so several independent queues can live in one
    store.
    """

    prefix: str = "offload"

    @property
    def job_prefix(self) -> str:
        return f"{self.prefix}:job:"

    @property
    def history_prefix(self) -> str:
        return f"{self.prefix}:history:"

    @property
    def events_prefix(self) -> str:
        return f"{self.prefix}:events:"

    @property
    def queue_prefix(self) -> str:
        return f"{self.prefix}:queue:"

    @property
    def active(self) -> str:
        """Sorted set of active job ids scored by start time."""
        return f"{self.prefix}:active"

    @property
    def seq(self) -> str:
        """Enqueue counter, gives FIFO order within a priority."""
        return f"{self.prefix}:seq"

    def job(self, job_id: str) -> str:
        return f"{self.job_prefix}{job_id}"

    def history(self, job_id: str) -> str:
        return f"{self.history_prefix}{job_id}"

    def queue(self, job_type: str) -> str:
        return f"{self.queue_prefix}{job_type}"

    def events(self, job_id: str) -> str:
        return f"{self.events_prefix}{job_id}"

    def signal(self, job_type: str) -> str:
        """Channel that receives a message whenever a job of ``job_type`` is enqueued."""
        return f"{self.prefix}:signal:{job_type}"
