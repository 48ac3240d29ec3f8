"""
Scaling policies.

A policy answers one question: how many single-slot worker processes should
run on this host right now. Hosts never coordinate; each one runs its own
controller against the shared store.
"""

import math
import os
from abc import ABC, abstractmethod

from offload.config import Settings


class ScalingPolicy(ABC):
    """Decides the worker process count for one host."""

    name: str

    @abstractmethod
    def desired_workers(self, backlog: int) -> int:
        """
        Args:
            backlog: Queued plus active jobs of the served types.

        Returns:
            Number of worker processes to run.
        """


class FixedPolicy(ScalingPolicy):
    """
    One worker process per CPU, regardless of load.

    The first ``workers`` concurrent jobs start immediately; anything beyond
    waits for a free process.
    """

    name = "fixed"

    def __init__(self, workers: int | None = None):
        self.workers = workers or os.cpu_count() or 1
        if self.workers < 1:
            raise ValueError("workers must be at least 1")

    def desired_workers(self, backlog: int) -> int:
        return self.workers


class ElasticPolicy(ScalingPolicy):
    """
    Grow and shrink with the backlog.

    Runs ``ceil(backlog / jobs_per_worker)`` processes, bounded by
    ``min_workers`` and ``max_workers``. Adding hosts that run this policy
    adds claim throughput with no change anywhere else.
    """

    name = "elastic"

    def __init__(self, min_workers: int = 1, max_workers: int = 8, jobs_per_worker: int = 10):
        if min_workers < 0:
            raise ValueError("min_workers must not be negative")
        if max_workers < max(min_workers, 1):
            raise ValueError("max_workers must be at least min_workers and at least 1")
        if jobs_per_worker < 1:
            raise ValueError("jobs_per_worker must be at least 1")
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.jobs_per_worker = jobs_per_worker

    def desired_workers(self, backlog: int) -> int:
        wanted = math.ceil(max(backlog, 0) / self.jobs_per_worker)
        return max(self.min_workers, min(self.max_workers, wanted))


def get_policy(settings: Settings) -> ScalingPolicy:
    """Build the policy named by ``scaling_policy``."""
    match settings.scaling_policy.lower():
        case "fixed":
            return FixedPolicy()
        case "elastic":
            return ElasticPolicy(
                min_workers=settings.scaling_min_workers,
                max_workers=settings.scaling_max_workers,
                jobs_per_worker=settings.scaling_jobs_per_worker,
            )
        case other:
            raise ValueError(f"Unknown scaling policy: {other}")
