"""
Worker runtime for executing jobs.

The worker claims jobs of its registered types, runs their handlers, and
records the outcome. Any number of workers in any number of processes or
machines can point at the same store; the queue engine's claim is the only
coordination between them.
"""

import asyncio
import contextvars
import functools
import logging
import os
import signal
import time
from concurrent.futures import Executor
from typing import Any
from uuid import uuid4

from redis.exceptions import RedisError

from offload.config import Settings, get_settings
from offload.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, SPAN_FINALIZE_JOB, JobState
from offload.errors import JobNotFound, OwnershipMismatch
from offload.observability.logging import job_context, setup_logging
from offload.observability.metrics import get_metrics, start_metrics_server
from offload.observability.tracing import (
    get_tracer,
    instrument_redis,
    set_span_attributes,
    setup_tracing,
)
from offload.queue.engine import QueueEngine
from offload.store import close_store, init_store
from offload.types.job import Job, JobError
from offload.worker.handlers import (
    HandlerRegistry,
    JobHandler,
    default_registry,
    load_handler_modules,
)

logger = logging.getLogger(__name__)

# Seconds a single read of the work signal channel may block
_SIGNAL_READ_TIMEOUT = 1.0


def default_worker_id() -> str:
    """Hostname and PID, plus a random suffix so a reused PID never matches a stale owner."""
    return f"{os.uname().nodename}-{os.getpid()}-{uuid4().hex[:6]}"


class WorkerRuntime:
    """
    Claims and executes jobs of registered types.

    Features:
    - Several job types per runtime, claimed round-robin
    - ``concurrency`` independent slots, each running one job at a time
    - Exponential idle backoff, cut short when a job of a registered type
      is enqueued
    - Graceful shutdown: in-flight jobs finish before ``start`` returns

    Slots are asyncio tasks. Plain-function handlers run in ``executor``
    (the loop's default thread pool unless given), so more slots only help
    handlers that wait on I/O or release the GIL. CPU-bound work scales by
    running one single-slot runtime per core, in separate processes, which
    is what the scaling controller does.
    """

    def __init__(
        self,
        engine: QueueEngine,
        registry: HandlerRegistry | None = None,
        worker_id: str | None = None,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        max_poll_interval: float | None = None,
        executor: Executor | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the worker.

        Args:
            engine: Queue engine bound to the shared store.
            registry: Handlers to serve. Defaults to an empty registry.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            concurrency: Number of job slots.
            poll_interval: Initial idle wait in seconds.
            max_poll_interval: Cap for the idle backoff.
            executor: Where plain-function handlers run.
            settings: Defaults for the values above.
        """
        settings = settings or get_settings()

        self._engine = engine
        self.registry = registry if registry is not None else HandlerRegistry()
        self.worker_id = worker_id or settings.worker_id or default_worker_id()
        self.concurrency = concurrency or settings.worker_concurrency
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.max_poll_interval = max(
            max_poll_interval or settings.worker_max_poll_interval_seconds,
            self.poll_interval,
        )
        self._executor = executor

        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._running = False
        self._work_available = asyncio.Event()
        self._slots: list[asyncio.Task] = []
        self._current_jobs: dict[str, Job] = {}
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_jobs(self) -> list[str]:
        """Ids of the jobs being executed right now."""
        return list(self._current_jobs)

    def register(self, job_type: str, handler: JobHandler) -> None:
        """Serve ``job_type`` with ``handler``."""
        self.registry.register(job_type, handler)

    async def start(self) -> None:
        """Run until ``stop`` is called."""
        job_types = self.registry.job_types()
        if not job_types:
            raise RuntimeError("No handlers registered")

        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "concurrency": self.concurrency,
                "job_types": job_types,
            },
        )

        self._running = True
        listener = asyncio.create_task(self._listen_for_work(job_types))
        self._slots = [
            asyncio.create_task(self._slot_loop(index)) for index in range(self.concurrency)
        ]

        try:
            await asyncio.gather(*self._slots)
        finally:
            self._running = False
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
            self._slots = []

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop claiming; jobs already running are finished first."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._wake()

    async def run_once(self, job_types: list[str] | None = None) -> Job | None:
        """
        Claim and process at most one job.

        Args:
            job_types: Types to try, in order. Defaults to all registered types.

        Returns:
            The job that was processed, as claimed, or None if nothing was queued.
        """
        job = await self._claim_next(job_types or self.registry.job_types())
        if job is not None:
            await self._process(job)
        return job

    async def _slot_loop(self, index: int) -> None:
        job_types = self.registry.job_types()
        delay = self.poll_interval
        # Rotate the starting type so one busy type cannot starve the others
        offset = index

        while self._running:
            try:
                rotated = job_types[offset % len(job_types):] + job_types[:offset % len(job_types)]
                offset += 1
                job = await self._claim_next(rotated)
            except Exception as e:
                logger.exception(
                    f"Error claiming job: {e}",
                    extra={"worker_id": self.worker_id}
                )
                job = None

            if job is None:
                await self._idle(delay)
                delay = min(delay * 2, self.max_poll_interval)
                continue

            delay = self.poll_interval
            await self._process(job)

    async def _claim_next(self, job_types: list[str]) -> Job | None:
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            set_span_attributes(span, worker_id=self.worker_id)
            for job_type in job_types:
                job = await self._engine.claim(job_type, self.worker_id)
                if job is not None:
                    set_span_attributes(span, job_id=job.id, job_type=job_type)
                    self._metrics.record_job_claimed(job_type)
                    return job
        return None

    async def _process(self, job: Job) -> None:
        """
        Execute a claimed job and record its outcome.

        Handler exceptions fail the job; they never escape to the loop.
        """
        start_time = time.monotonic()
        self._current_jobs[job.id] = job
        result: Any = None
        error: JobError | None = None

        try:
            with job_context(job.id, job.type, self.worker_id):
                logger.info("Executing job")
                with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                    set_span_attributes(span, job_id=job.id, job_type=job.type)
                    try:
                        result = await self._execute(job)
                    except Exception as e:
                        logger.warning(
                            "Handler raised exception",
                            extra={"error": str(e)},
                            exc_info=True,
                        )
                        error = JobError.from_exception(e)

                await self._finalize(job, result, error, time.monotonic() - start_time)
        finally:
            self._current_jobs.pop(job.id, None)

    async def _execute(self, job: Job) -> Any:
        handler = self.registry.get(job.type)
        if handler is None:
            raise LookupError(f"No handler registered for job type: {job.type}")

        if self.registry.is_async(job.type):
            return await handler(job.payload)

        # Carry the job log context into the executor thread
        context = contextvars.copy_context()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(context.run, handler, job.payload)
        )

    async def _finalize(
        self,
        job: Job,
        result: Any,
        error: JobError | None,
        duration: float,
    ) -> None:
        state = JobState.COMPLETED if error is None else JobState.FAILED

        with get_tracer().start_as_current_span(SPAN_FINALIZE_JOB) as span:
            set_span_attributes(span, job_id=job.id, state=state.value)
            try:
                if state == JobState.COMPLETED:
                    try:
                        await self._engine.complete(job.id, self.worker_id, result)
                    except (TypeError, ValueError) as e:
                        # Result could not be serialized
                        error = JobError.from_exception(e)
                        state = JobState.FAILED
                if state == JobState.FAILED:
                    await self._engine.fail(job.id, self.worker_id, error)
            except (OwnershipMismatch, JobNotFound) as e:
                logger.warning(
                    "Discarding outcome of job no longer owned",
                    extra={"job_id": job.id, "worker_id": self.worker_id, "reason": str(e)},
                )
                self._metrics.record_ownership_mismatch(job.type)
                return
            except RedisError:
                # The job stays active until the sweep times it out
                logger.exception(
                    "Failed to record job outcome",
                    extra={"job_id": job.id, "worker_id": self.worker_id},
                )
                return

        logger.info(
            "Job finished",
            extra={
                "job_id": job.id,
                "state": state.value,
                "duration": f"{duration:.3f}s",
            },
        )
        self._metrics.record_job_finished(job.type, state.value, duration)

    def _wake(self) -> None:
        # Everyone waiting on the old event wakes; later waiters get a fresh one
        self._work_available.set()
        self._work_available = asyncio.Event()

    async def _idle(self, delay: float) -> None:
        event = self._work_available
        try:
            await asyncio.wait_for(event.wait(), timeout=delay)
        except TimeoutError:
            pass

    async def _listen_for_work(self, job_types: list[str]) -> None:
        """Wake idle slots when a job of a served type is enqueued."""
        channels = [self._engine.keys.signal(job_type) for job_type in job_types]
        pubsub = self._engine.client.pubsub()
        try:
            await pubsub.subscribe(*channels)
            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=_SIGNAL_READ_TIMEOUT,
                )
                if message is not None:
                    self._wake()
        except RedisError:
            logger.warning(
                "Work signal listener stopped, falling back to polling",
                extra={"worker_id": self.worker_id},
                exc_info=True,
            )
        finally:
            await pubsub.aclose()


async def run_async(
    worker_id: str | None = None,
    concurrency: int | None = None,
    serve_metrics: bool = True,
) -> None:
    """
    Run a worker process until SIGTERM or SIGINT.

    Args:
        worker_id: Defaults to ``worker_id`` from settings, then hostname + PID.
        concurrency: Job slots. Defaults to ``worker_concurrency``.
        serve_metrics: Expose Prometheus metrics on ``metrics_port``.
    """
    settings = get_settings()
    setup_logging("worker")
    setup_tracing()
    instrument_redis()
    if serve_metrics:
        start_metrics_server(settings.metrics_port)

    load_handler_modules(settings.worker_handler_modules)

    client = await init_store(settings)
    engine = QueueEngine(client, settings.key_prefix)
    worker = WorkerRuntime(
        engine,
        default_registry,
        worker_id=worker_id,
        concurrency=concurrency,
        settings=settings,
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_store()


def run(
    worker_id: str | None = None,
    concurrency: int | None = None,
    serve_metrics: bool = True,
) -> None:
    """Run the worker."""
    asyncio.run(run_async(worker_id, concurrency, serve_metrics))


if __name__ == "__main__":
    run()
