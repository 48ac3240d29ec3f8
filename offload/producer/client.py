"""
Producer API.

Submits jobs and lets the caller wait for their outcome. Each producer keeps
one pattern subscription to the job notification channels, read by a single
listener task that resolves a future per waiting job. Store connections
therefore stay constant however many waits are outstanding, and every wait
is an independent asyncio suspension that never stalls the rest of the
process.
"""

import asyncio
import logging
from typing import Any

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from offload.config import Settings, get_settings
from offload.constants import DEFAULT_PRIORITY, SPAN_SUBMIT_JOB, JobState
from offload.errors import (
    AbandonedJob,
    EnqueueFailure,
    HandlerFailure,
    JobNotFound,
    TimedOutWait,
)
from offload.observability.metrics import get_metrics
from offload.observability.tracing import get_tracer, set_span_attributes
from offload.queue.engine import QueueEngine
from offload.types.events import JobEvent
from offload.types.job import Job, JobOutcome, OutcomeStatus, SubmitOptions

logger = logging.getLogger(__name__)

# Upper bound on a single blocking read of the notification channels
_MESSAGE_READ_TIMEOUT = 1.0


class JobHandle:
    """Reference to a submitted job that can be waited on."""

    def __init__(self, producer: "Producer", job_id: str, job_type: str, auto_cleanup: bool):
        self._producer = producer
        self.job_id = job_id
        self.job_type = job_type
        self.auto_cleanup = auto_cleanup

    async def wait(self, timeout: float | None = None) -> JobOutcome:
        """Wait for the job to finish. See ``Producer.wait``."""
        return await self._producer.wait(self, timeout)

    async def result(self, timeout: float | None = None) -> Any:
        """
        Wait for the job and return its result.

        Raises:
            HandlerFailure: The handler raised.
            AbandonedJob: The job was swept after its worker went silent.
            TimedOutWait: The wait expired; the job may still complete.
        """
        outcome = await self.wait(timeout)
        match outcome.status:
            case OutcomeStatus.COMPLETED:
                return outcome.result
            case OutcomeStatus.FAILED:
                raise HandlerFailure(self.job_id, outcome.error)
            case OutcomeStatus.ABANDONED:
                raise AbandonedJob(self.job_id)
            case _:
                waited = self._producer.resolve_timeout(timeout)
                raise TimedOutWait(self.job_id, waited)

    def __repr__(self) -> str:
        return f"JobHandle(id={self.job_id}, type={self.job_type})"


class Producer:
    """
    Creates jobs and reports their outcome.

    Any number of producers in any number of processes can share a queue.
    Call ``close`` on shutdown to release the notification subscription.
    """

    def __init__(self, engine: QueueEngine, settings: Settings | None = None):
        """
        Initialize the producer.

        Args:
            engine: The queue engine to submit through.
            settings: Defaults for wait timeout and cleanup grace period.
        """
        self._engine = engine
        self._settings = settings or get_settings()
        self._metrics = get_metrics()

        self._pubsub: PubSub | None = None
        self._listener: asyncio.Task | None = None
        self._listener_lock = asyncio.Lock()
        self._waiters: dict[str, set[asyncio.Future]] = {}

    def resolve_timeout(self, timeout: float | None) -> float:
        if timeout is None:
            return self._settings.default_wait_timeout_seconds
        return timeout

    async def submit(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: int = DEFAULT_PRIORITY,
        options: SubmitOptions | None = None,
    ) -> JobHandle:
        """
        Create and enqueue a job.

        Args:
            job_type: Selects the handler that processes the job.
            payload: JSON-serializable handler input.
            priority: Higher values are claimed first.
            options: Cleanup and retention options.

        Returns:
            A handle to wait on. Never waiting on it is fine.

        Raises:
            EnqueueFailure: The store was unreachable or rejected the write.
        """
        options = options or SubmitOptions()
        ttl = options.ttl
        if ttl is None and options.auto_cleanup:
            ttl = self._settings.cleanup_grace_seconds

        job = Job(
            type=job_type,
            payload=payload or {},
            priority=int(priority),
            auto_cleanup=options.auto_cleanup,
            ttl=ttl,
        )

        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            set_span_attributes(span, job_id=job.id, job_type=job_type, priority=job.priority)
            try:
                await self._engine.enqueue(job)
            except (RedisError, ValueError) as e:
                logger.error(
                    "Failed to enqueue job",
                    extra={"job_id": job.id, "job_type": job_type, "error": str(e)},
                )
                raise EnqueueFailure(f"Could not enqueue job of type {job_type!r}", e) from e

        self._metrics.record_job_submitted(job_type)
        return JobHandle(self, job.id, job_type, options.auto_cleanup)

    async def wait(self, handle: JobHandle, timeout: float | None = None) -> JobOutcome:
        """
        Wait until the job reaches a terminal state or ``timeout`` elapses.

        An expired wait returns a ``TIMED_OUT`` outcome and leaves the job
        alone; it may still complete later. The timeout bounds the whole
        call, store round trips included.

        Args:
            handle: The job to wait on.
            timeout: Seconds to wait. Defaults to ``default_wait_timeout_seconds``.

        Returns:
            JobOutcome with status completed, failed, abandoned or timed_out.

        Raises:
            JobNotFound: The job record does not exist.
            RedisError: The notification listener lost the store.
        """
        timeout = self.resolve_timeout(timeout)
        job_id = handle.job_id
        waiter = self._watch(job_id)
        try:
            async with asyncio.timeout(timeout):
                # Listen before reading so a transition in between is not missed
                await self._ensure_listener()
                job = await self._engine.get_job(job_id)
                while job is not None and not job.is_terminal:
                    await waiter
                    self._unwatch(job_id, waiter)
                    waiter = self._watch(job_id)
                    job = await self._engine.get_job(job_id)
        except TimeoutError:
            logger.info(
                "Wait for job expired",
                extra={"job_id": job_id, "timeout": timeout},
            )
            return JobOutcome.wait_expired(job_id)
        finally:
            self._unwatch(job_id, waiter)

        if job is None:
            raise JobNotFound(job_id)

        if handle.auto_cleanup:
            await self._engine.remove(job_id)

        return JobOutcome.from_job(job)

    async def get(self, job_id: str) -> Job | None:
        """Inspect a job without waiting."""
        return await self._engine.get_job(job_id)

    async def remove(self, job_id: str) -> bool:
        """Delete a job record explicitly."""
        return await self._engine.remove(job_id)

    async def resubmit(self, job_id: str, options: SubmitOptions | None = None) -> JobHandle:
        """
        Submit a new job with the type, payload and priority of an existing one.

        The original job is left untouched, so each attempt keeps its own
        history.

        Raises:
            JobNotFound: The original job no longer exists.
        """
        original = await self._engine.get_job(job_id)
        if original is None:
            raise JobNotFound(job_id)
        handle = await self.submit(
            original.type,
            original.payload,
            original.priority,
            options or SubmitOptions(auto_cleanup=original.auto_cleanup),
        )
        logger.info(
            "Resubmitted job",
            extra={"job_id": handle.job_id, "original_job_id": job_id},
        )
        return handle

    async def close(self) -> None:
        """Stop the notification listener and release its connection."""
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
        await self._release_pubsub()

    def _watch(self, job_id: str) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(job_id, set()).add(future)
        return future

    def _unwatch(self, job_id: str, future: asyncio.Future) -> None:
        futures = self._waiters.get(job_id)
        if futures is None:
            return
        futures.discard(future)
        if not futures:
            del self._waiters[job_id]

    async def _ensure_listener(self) -> None:
        """Start the shared listener once its subscription is in place."""
        async with self._listener_lock:
            if self._listener is not None and not self._listener.done():
                return
            await self._release_pubsub()
            # Tracked before subscribing so close() releases it if we are cancelled
            pubsub = self._pubsub = self._engine.client.pubsub()
            await pubsub.psubscribe(f"{self._engine.keys.events_prefix}*")
            self._listener = asyncio.create_task(self._listen(pubsub))

    async def _listen(self, pubsub: PubSub) -> None:
        try:
            while True:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=_MESSAGE_READ_TIMEOUT,
                )
                event = JobEvent.from_message(message)
                if event is not None and event.is_terminal:
                    self._notify(event.job_id, event.state)
        except RedisError as e:
            logger.warning("Job notification listener stopped", exc_info=True)
            # Waiters see the store error now instead of at their timeout
            for futures in self._waiters.values():
                for future in futures:
                    if not future.done():
                        future.set_exception(e)

    def _notify(self, job_id: str, state: JobState) -> None:
        for future in self._waiters.get(job_id, ()):
            if not future.done():
                future.set_result(state)

    async def _release_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            await pubsub.aclose()
