"""
Prometheus metrics collection.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from offload.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_SUBMITTED,
    METRIC_JOBS_SWEPT,
    METRIC_OWNERSHIP_MISMATCH,
    METRIC_QUEUE_DEPTH,
    METRIC_WORKER_PROCESSES,
)

logger = logging.getLogger(__name__)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth per job type
    - Job submissions and terminal outcomes
    - Job execution duration
    - Claims, ownership mismatches and swept jobs
    - Worker processes managed by the scaling controller
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of queued jobs",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs submitted",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of jobs that reached a terminal state",
            ["job_type", "state"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_type", "state"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed",
            ["job_type"],
            registry=self._registry,
        )

        self.ownership_mismatch = Counter(
            METRIC_OWNERSHIP_MISMATCH,
            "Finalize attempts rejected because the worker no longer owned the job",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_swept = Counter(
            METRIC_JOBS_SWEPT,
            "Total number of abandoned jobs moved to timed_out",
            registry=self._registry,
        )

        self.worker_processes = Gauge(
            METRIC_WORKER_PROCESSES,
            "Worker processes run by the scaling controller",
            ["policy"],
            registry=self._registry,
        )

    def record_job_submitted(self, job_type: str) -> None:
        """Record a job submission."""
        self.jobs_submitted.labels(job_type=job_type).inc()

    def record_job_finished(
        self,
        job_type: str,
        state: str,
        duration_seconds: float,
    ) -> None:
        """Record a job reaching a terminal state through its worker."""
        self.jobs_finished.labels(job_type=job_type, state=state).inc()
        self.job_duration.labels(job_type=job_type, state=state).observe(
            duration_seconds
        )

    def record_job_claimed(self, job_type: str) -> None:
        self.jobs_claimed.labels(job_type=job_type).inc()

    def record_ownership_mismatch(self, job_type: str) -> None:
        self.ownership_mismatch.labels(job_type=job_type).inc()

    def record_jobs_swept(self, count: int) -> None:
        self.jobs_swept.inc(count)

    def update_queue_depth(self, job_type: str, depth: int) -> None:
        """Update queue depth for a job type."""
        self.queue_depth.labels(job_type=job_type).set(depth)

    def update_worker_processes(self, policy: str, count: int) -> None:
        self.worker_processes.labels(policy=policy).set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics


def start_metrics_server(port: int | None) -> None:
    """Expose the default registry over HTTP when a port is configured."""
    if port is None:
        return
    start_http_server(port)
    logger.info(f"Metrics server listening on port {port}")
