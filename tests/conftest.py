"""
Pytest configuration and shared fixtures.

The store is an in-process fakeredis server with Lua support, so the queue
engine's scripts run exactly as they would against Redis.
"""

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

from offload.config import Settings
from offload.producer import Producer
from offload.queue import QueueEngine
from offload.worker.handlers import HandlerRegistry
from offload.worker.main import WorkerRuntime


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        key_prefix="offload-test",
        log_level="DEBUG",
        log_format="console",
        worker_poll_interval_seconds=0.01,
        worker_max_poll_interval_seconds=0.05,
        job_timeout_seconds=1.0,
        reaper_interval_seconds=0.05,
        default_wait_timeout_seconds=2.0,
        cleanup_grace_seconds=60,
    )


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[FakeRedis]:
    """Fresh in-memory store per test."""
    client = FakeRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def engine(redis_client: FakeRedis, test_settings: Settings) -> QueueEngine:
    """Create a queue engine on the test store."""
    return QueueEngine(redis_client, test_settings.key_prefix)


@pytest_asyncio.fixture
async def producer(engine: QueueEngine, test_settings: Settings) -> AsyncGenerator[Producer]:
    """Create a producer on the test store."""
    producer = Producer(engine, test_settings)
    yield producer
    await producer.close()


@pytest.fixture
def registry() -> HandlerRegistry:
    """Handlers used across the worker and producer tests."""
    registry = HandlerRegistry()

    def square(payload: dict[str, Any]) -> int:
        return payload["n"] * payload["n"]

    def explode(payload: dict[str, Any]) -> None:
        raise ValueError(f"cannot process {payload.get('item')}")

    async def slow(payload: dict[str, Any]) -> str:
        await asyncio.sleep(payload.get("seconds", 0.2))
        return "done"

    registry.register("math", square)
    registry.register("explode", explode)
    registry.register("slow", slow)
    return registry


@pytest.fixture
def worker(
    engine: QueueEngine,
    registry: HandlerRegistry,
    test_settings: Settings,
) -> WorkerRuntime:
    """Create a single-slot worker."""
    return WorkerRuntime(
        engine,
        registry,
        worker_id="test-worker",
        settings=test_settings,
    )


@pytest_asyncio.fixture
async def running_worker(worker: WorkerRuntime) -> AsyncGenerator[WorkerRuntime]:
    """A worker whose loop runs in the background for the duration of a test."""
    task = asyncio.create_task(worker.start())
    yield worker
    await worker.stop()
    await asyncio.wait_for(task, timeout=5)
