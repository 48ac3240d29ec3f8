"""
Queue engine.
Implements type-partitioned, prioritized job storage with exclusive claims.
"""

import json
import logging
from datetime import datetime
from typing import Any

from redis.asyncio import Redis

from offload.constants import PRIORITY_SCORE_SPAN, JobState
from offload.errors import JobNotFound, OwnershipMismatch
from offload.queue import scripts
from offload.store.keys import StoreKeys
from offload.types.job import Job, JobError, to_epoch, utcnow

logger = logging.getLogger(__name__)


class QueueEngine:
    """
    Store-backed job queue.

    Implements atomic operations for:
    - Enqueue (record, history and queue entry written together)
    - Claim of the highest-priority, oldest queued job of a type
    - Ownership-checked completion and failure
    - Sweep of active jobs whose worker went silent

    Every mutation is a single Lua script, so any number of engines in any
    number of processes can share one store.
    """

    def __init__(self, client: Redis, prefix: str = "offload"):
        """
        Initialize the engine with a store client.

        Args:
            client: Async Redis client created with ``decode_responses=True``.
            prefix: Key prefix shared by every process using this queue.
        """
        self._client = client
        self.keys = StoreKeys(prefix)
        self._enqueue = client.register_script(scripts.ENQUEUE)
        self._claim = client.register_script(scripts.CLAIM)
        self._finalize = client.register_script(scripts.FINALIZE)
        self._sweep = client.register_script(scripts.SWEEP)
        self._remove = client.register_script(scripts.REMOVE)

    @property
    def client(self) -> Redis:
        return self._client

    async def enqueue(self, job: Job) -> str:
        """
        Persist a job and make it claimable.

        The record, its history and its queue entry are written by one
        script, so consumers never see a partially written job.

        Args:
            job: A job in the CREATED state.

        Returns:
            The job id.

        Raises:
            ValueError: If the job is not new or its id is already taken.
        """
        if job.state != JobState.CREATED:
            raise ValueError(f"Only created jobs can be enqueued, got {job.state}")

        record = job.model_copy(update={"state": JobState.QUEUED}).to_record()
        fields = [item for pair in record.items() for item in pair]

        seq = await self._enqueue(
            keys=[
                self.keys.job(job.id),
                self.keys.history(job.id),
                self.keys.queue(job.type),
                self.keys.seq,
            ],
            args=[
                job.id,
                self.keys.events_prefix,
                self.keys.signal(job.type),
                PRIORITY_SCORE_SPAN,
                *fields,
            ],
        )
        if seq is None:
            raise ValueError(f"Job {job.id} already exists")

        logger.info(
            "Enqueued job",
            extra={"job_id": job.id, "job_type": job.type, "priority": job.priority},
        )
        return job.id

    async def claim(self, job_type: str, worker_id: str) -> Job | None:
        """
        Claim the next queued job of a type.

        Picks the highest priority, then the earliest enqueued, and moves it
        to ACTIVE owned by ``worker_id``. Never blocks.

        Args:
            job_type: The queue partition to claim from.
            worker_id: The claiming worker.

        Returns:
            The claimed job, or None if nothing is queued.
        """
        now = utcnow()
        raw = await self._claim(
            keys=[self.keys.queue(job_type), self.keys.active],
            args=[
                self.keys.job_prefix,
                self.keys.history_prefix,
                self.keys.events_prefix,
                worker_id,
                to_epoch(now),
            ],
        )
        if not raw:
            return None

        job = Job.from_record(dict(zip(raw[::2], raw[1::2])))
        logger.info(
            "Claimed job",
            extra={"job_id": job.id, "job_type": job_type, "worker_id": worker_id},
        )
        return job

    async def complete(self, job_id: str, worker_id: str, result: Any = None) -> None:
        """
        Mark an active job as completed.

        Args:
            job_id: The job id.
            worker_id: Must match the current owner.
            result: JSON-serializable handler output.

        Raises:
            OwnershipMismatch: If the job is not active or owned by someone else.
            JobNotFound: If the record no longer exists.
        """
        await self._finish(job_id, worker_id, JobState.COMPLETED, "result", json.dumps(result))
        logger.info("Job completed", extra={"job_id": job_id, "worker_id": worker_id})

    async def fail(self, job_id: str, worker_id: str, error: JobError) -> None:
        """
        Mark an active job as failed.

        Args:
            job_id: The job id.
            worker_id: Must match the current owner.
            error: Structured failure reason.

        Raises:
            OwnershipMismatch: If the job is not active or owned by someone else.
            JobNotFound: If the record no longer exists.
        """
        await self._finish(job_id, worker_id, JobState.FAILED, "error", error.model_dump_json())
        logger.warning(
            "Job failed",
            extra={"job_id": job_id, "worker_id": worker_id, "error": error.message},
        )

    async def _finish(
        self,
        job_id: str,
        worker_id: str,
        state: JobState,
        field: str,
        value: str,
    ) -> None:
        status = await self._finalize(
            keys=[self.keys.job(job_id), self.keys.history(job_id), self.keys.active],
            args=[
                job_id,
                worker_id,
                state.value,
                field,
                value,
                to_epoch(utcnow()),
                self.keys.events_prefix,
            ],
        )
        if status == -1:
            raise JobNotFound(job_id)
        if status == 0:
            raise OwnershipMismatch(job_id, worker_id)

    async def sweep_expired(self, deadline: datetime) -> list[str]:
        """
        Time out active jobs started at or before ``deadline``.

        Safe to run concurrently and repeatedly: jobs that are already
        terminal are only dropped from the active index.

        Args:
            deadline: Jobs started at or before this instant are abandoned.

        Returns:
            Ids of the jobs moved to TIMED_OUT by this call.
        """
        swept = await self._sweep(
            keys=[self.keys.active],
            args=[
                to_epoch(deadline),
                to_epoch(utcnow()),
                self.keys.job_prefix,
                self.keys.history_prefix,
                self.keys.events_prefix,
            ],
        )
        swept = list(swept or [])
        if swept:
            logger.warning(
                f"Timed out {len(swept)} abandoned jobs",
                extra={"job_ids": swept},
            )
        return swept

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by id.

        Returns:
            The Job or None if not found.
        """
        record = await self._client.hgetall(self.keys.job(job_id))
        if not record:
            return None
        return Job.from_record(record)

    async def history(self, job_id: str) -> list[JobState]:
        """States the job has entered, oldest first."""
        states = await self._client.lrange(self.keys.history(job_id), 0, -1)
        return [JobState(state) for state in states]

    async def remove(self, job_id: str) -> bool:
        """
        Delete a job record, its history and any queue membership.

        Returns:
            True if a record was removed.
        """
        removed = await self._remove(
            keys=[self.keys.job(job_id), self.keys.history(job_id), self.keys.active],
            args=[job_id, self.keys.queue_prefix],
        )
        if removed:
            logger.info("Removed job", extra={"job_id": job_id})
        return bool(removed)

    async def queue_depth(self, job_type: str) -> int:
        """Number of queued jobs of a type."""
        return await self._client.zcard(self.keys.queue(job_type))

    async def active_count(self) -> int:
        """Number of jobs currently held by workers, across all types."""
        return await self._client.zcard(self.keys.active)

    async def queue_types(self) -> list[str]:
        """Job types that currently have queued jobs."""
        prefix = self.keys.queue_prefix
        # SCAN may return a key more than once
        types = {
            key[len(prefix):]
            async for key in self._client.scan_iter(match=f"{prefix}*", _type="zset")
        }
        return sorted(types)
