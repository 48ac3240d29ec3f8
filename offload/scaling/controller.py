"""
Scaling controller.

Keeps the number of worker processes on this host at what the policy asks
for. Every worker process independently claims from the shared queue, so
the controller never talks to workers beyond starting and stopping them.
"""

import asyncio
import logging
import multiprocessing
import signal
from collections.abc import Callable
from multiprocessing.process import BaseProcess

from offload.config import get_settings
from offload.observability.logging import setup_logging
from offload.observability.metrics import get_metrics, start_metrics_server
from offload.queue.engine import QueueEngine
from offload.scaling.policies import ScalingPolicy, get_policy
from offload.store import close_store, init_store
from offload.worker.main import default_worker_id
from offload.worker.main import run as run_worker

logger = logging.getLogger(__name__)

ProcessFactory = Callable[[str], BaseProcess]


def spawn_worker_process(worker_id: str) -> BaseProcess:
    """
    Create a worker process running a single-slot runtime.

    Uses the ``spawn`` start method so the child gets a fresh interpreter
    and event loop.
    """
    context = multiprocessing.get_context("spawn")
    return context.Process(
        target=run_worker,
        kwargs={"worker_id": worker_id, "concurrency": 1, "serve_metrics": False},
        name=worker_id,
    )


class ScalingController:
    """
    Reconciles running worker processes with a scaling policy.

    Surplus processes are sent SIGTERM and drain their current job before
    exiting; processes that die on their own are replaced on the next pass.
    """

    def __init__(
        self,
        engine: QueueEngine,
        policy: ScalingPolicy,
        job_types: list[str] | None = None,
        process_factory: ProcessFactory | None = None,
        interval_seconds: float | None = None,
        stop_timeout_seconds: float = 30.0,
    ):
        """
        Initialize the controller.

        Args:
            engine: Used to measure the backlog.
            policy: Decides the process count.
            job_types: Types whose backlog drives the policy. Empty means
                every type that has queued jobs.
            process_factory: Creates an unstarted process for a worker id.
            interval_seconds: Seconds between reconcile passes.
            stop_timeout_seconds: Grace period for draining on shutdown.
        """
        settings = get_settings()
        self._engine = engine
        self.policy = policy
        self.job_types = job_types if job_types is not None else settings.scaling_job_types
        self._process_factory = process_factory or spawn_worker_process
        self.interval = interval_seconds or settings.scaling_interval_seconds
        self.stop_timeout = stop_timeout_seconds

        self._processes: list[BaseProcess] = []
        self._draining: list[BaseProcess] = []
        self._running = False
        self._stopped = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def worker_count(self) -> int:
        """Processes counted toward the policy; draining ones excluded."""
        return len(self._processes)

    @property
    def draining_count(self) -> int:
        return len(self._draining)

    async def backlog(self) -> int:
        """Queued jobs of the served types plus all active jobs."""
        total = await self._engine.active_count()
        job_types = self.job_types or await self._engine.queue_types()
        for job_type in job_types:
            depth = await self._engine.queue_depth(job_type)
            self._metrics.update_queue_depth(job_type, depth)
            total += depth
        return total

    async def reconcile(self) -> int:
        """
        Run one reconcile pass.

        Returns:
            Number of worker processes after the pass.
        """
        self._reap()

        backlog = await self.backlog()
        desired = self.policy.desired_workers(backlog)

        while len(self._processes) < desired:
            worker_id = default_worker_id()
            process = self._process_factory(worker_id)
            process.start()
            self._processes.append(process)
            logger.info("Started worker process", extra={"worker_id": worker_id})

        while len(self._processes) > desired:
            process = self._processes.pop()
            process.terminate()
            self._draining.append(process)
            logger.info("Draining worker process", extra={"worker_id": process.name})

        self._metrics.update_worker_processes(self.policy.name, len(self._processes))
        logger.debug(
            "Reconciled worker processes",
            extra={"backlog": backlog, "desired": desired, "policy": self.policy.name},
        )
        return len(self._processes)

    def _reap(self) -> None:
        for process in [p for p in self._processes if not p.is_alive()]:
            logger.warning(
                "Worker process exited",
                extra={"worker_id": process.name, "exitcode": process.exitcode},
            )
            self._processes.remove(process)
        self._draining = [p for p in self._draining if p.is_alive()]

    async def start(self) -> None:
        """Reconcile until ``stop`` is called, then drain every process."""
        logger.info(
            "Scaling controller starting",
            extra={"policy": self.policy.name, "job_types": self.job_types},
        )
        self._running = True
        self._stopped = asyncio.Event()

        try:
            while self._running:
                try:
                    await self.reconcile()
                except Exception as e:
                    logger.exception(f"Error in scaling loop: {e}")

                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
                except TimeoutError:
                    pass
        finally:
            await self.shutdown()

        logger.info("Scaling controller stopped")

    async def stop(self) -> None:
        logger.info("Scaling controller stopping")
        self._running = False
        self._stopped.set()

    async def shutdown(self) -> None:
        """Terminate all processes, wait for them to drain, kill stragglers."""
        processes = self._processes + self._draining
        self._processes = []
        self._draining = []

        for process in processes:
            if process.is_alive():
                process.terminate()

        for process in processes:
            await asyncio.to_thread(process.join, self.stop_timeout)
            if process.is_alive():
                logger.warning("Killing worker process", extra={"worker_id": process.name})
                process.kill()

        self._metrics.update_worker_processes(self.policy.name, 0)


async def run_async() -> None:
    """Run the scaling controller for this host."""
    settings = get_settings()
    setup_logging("pool")
    start_metrics_server(settings.metrics_port)

    client = await init_store(settings)
    controller = ScalingController(
        QueueEngine(client, settings.key_prefix),
        get_policy(settings),
    )

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(controller.stop())
        )

    try:
        await controller.start()
    finally:
        await close_store()


def run() -> None:
    """Run the scaling controller."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
