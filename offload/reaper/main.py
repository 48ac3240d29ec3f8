"""
Reaper for abandoned jobs.

The reaper runs periodically and times out active jobs whose worker has
not finalized them within ``job_timeout_seconds``. This is the recovery
path for crashed or hung workers; the workers themselves never self-heal.
Several reapers may run at once, the sweep is idempotent.
"""

import asyncio
import logging
import signal
from datetime import timedelta

from offload.config import get_settings
from offload.constants import SPAN_SWEEP
from offload.observability.logging import setup_logging
from offload.observability.metrics import get_metrics, start_metrics_server
from offload.observability.tracing import get_tracer, instrument_redis, setup_tracing
from offload.queue.engine import QueueEngine
from offload.store import close_store, init_store
from offload.types.job import utcnow

logger = logging.getLogger(__name__)


class Reaper:
    """
    Periodic sweep of abandoned jobs.

    Runs periodically to:
    1. Find ACTIVE jobs started more than ``timeout_seconds`` ago
    2. Move them to TIMED_OUT and release their ownership
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        engine: QueueEngine,
        timeout_seconds: float | None = None,
        interval_seconds: float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            engine: Queue engine bound to the shared store.
            timeout_seconds: Age after which an active job counts as abandoned.
            interval_seconds: Seconds between sweeps.
        """
        settings = get_settings()
        self._engine = engine
        self.timeout = timeout_seconds or settings.job_timeout_seconds
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._running = False
        self._stopped = asyncio.Event()
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"timeout_seconds": self.timeout},
        )
        self._running = True
        self._stopped = asyncio.Event()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> list[str]:
        """
        Run one sweep (for testing or cron-style execution).

        Returns:
            Ids of the jobs timed out by this sweep.
        """
        deadline = utcnow() - timedelta(seconds=self.timeout)
        with get_tracer().start_as_current_span(SPAN_SWEEP):
            swept = await self._engine.sweep_expired(deadline)

        if swept:
            self._metrics.record_jobs_swept(len(swept))

        return swept


async def run_async() -> None:
    """Run the reaper asynchronously."""
    settings = get_settings()
    setup_logging("reaper")
    setup_tracing()
    instrument_redis()
    start_metrics_server(settings.metrics_port)

    client = await init_store(settings)
    reaper = Reaper(QueueEngine(client, settings.key_prefix))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_store()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
