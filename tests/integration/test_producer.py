"""
Integration tests for submitting jobs and waiting on their outcome.
"""

import asyncio
from datetime import timedelta
from uuid import UUID

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from redis.asyncio import BlockingConnectionPool
from redis.exceptions import ConnectionError as RedisConnectionError

from offload.config import Settings
from offload.constants import JobPriority, JobState
from offload.errors import (
    AbandonedJob,
    EnqueueFailure,
    HandlerFailure,
    JobNotFound,
    TimedOutWait,
)
from offload.producer import JobHandle, Producer
from offload.queue import QueueEngine
from offload.types.job import Job, OutcomeStatus, SubmitOptions, utcnow
from offload.worker.handlers import HandlerRegistry
from offload.worker.main import WorkerRuntime


class TestSubmit:
    """Tests for Producer.submit."""

    async def test_submit_queues_job(self, engine: QueueEngine, producer: Producer):
        handle = await producer.submit("math", {"n": 5}, priority=JobPriority.HIGH)

        job = await producer.get(handle.job_id)
        assert job.state == JobState.QUEUED
        assert job.type == "math"
        assert job.payload == {"n": 5}
        assert job.priority == 10
        assert job.ttl is None
        assert await engine.queue_depth("math") == 1

    async def test_fire_and_forget(
        self, engine: QueueEngine, producer: Producer, worker: WorkerRuntime
    ):
        """Test a job nobody waits on still runs to completion."""
        handle = await producer.submit("math", {"n": 4})

        await worker.run_once()

        assert (await producer.get(handle.job_id)).result == 16

    async def test_store_unavailable(
        self, engine: QueueEngine, producer: Producer, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that a store failure surfaces as EnqueueFailure and no job exists."""

        async def unreachable(job: Job) -> str:
            raise RedisConnectionError("Connection refused")

        monkeypatch.setattr(engine, "enqueue", unreachable)

        with pytest.raises(EnqueueFailure) as exc_info:
            await producer.submit("math", {"n": 5})

        assert isinstance(exc_info.value.cause, RedisConnectionError)
        assert await engine.queue_depth("math") == 0

    async def test_duplicate_id_rejected(
        self, engine: QueueEngine, producer: Producer, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that an id collision surfaces as EnqueueFailure and keeps the first job."""
        fixed = UUID("12345678123456781234567812345678")
        monkeypatch.setattr("offload.types.job.uuid4", lambda: fixed)

        first = await producer.submit("math", {"n": 1})
        with pytest.raises(EnqueueFailure) as exc_info:
            await producer.submit("math", {"n": 2})

        assert isinstance(exc_info.value.cause, ValueError)
        assert first.job_id == fixed.hex
        assert (await producer.get(first.job_id)).payload == {"n": 1}
        assert await engine.queue_depth("math") == 1

    async def test_auto_cleanup_sets_grace_ttl(self, producer: Producer):
        handle = await producer.submit("math", options=SubmitOptions(auto_cleanup=True))

        job = await producer.get(handle.job_id)
        assert job.auto_cleanup is True
        assert job.ttl == 60

    async def test_explicit_ttl(self, producer: Producer):
        handle = await producer.submit("math", options=SubmitOptions(ttl=5))
        assert (await producer.get(handle.job_id)).ttl == 5


class TestWait:
    """Tests for Producer.wait and JobHandle.result."""

    async def test_result_from_running_worker(
        self, producer: Producer, running_worker: WorkerRuntime
    ):
        handle = await producer.submit("math", {"n": 5})

        outcome = await handle.wait(timeout=5)

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.result == 25
        assert outcome.job_id == handle.job_id

    async def test_many_concurrent_waiters(
        self, producer: Producer, running_worker: WorkerRuntime
    ):
        handles = [await producer.submit("math", {"n": n}) for n in range(10)]

        results = await asyncio.gather(*(handle.result(timeout=5) for handle in handles))

        assert results == [n * n for n in range(10)]

    async def test_already_finished(self, producer: Producer, worker: WorkerRuntime):
        """Test waiting on a finished job returns without blocking."""
        handle = await producer.submit("math", {"n": 3})
        await worker.run_once()

        outcome = await asyncio.wait_for(handle.wait(timeout=30), timeout=1)

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.result == 9

    async def test_wait_expires_without_touching_job(
        self, producer: Producer, running_worker: WorkerRuntime
    ):
        """Test an expired wait reports TIMED_OUT while the job still completes."""
        handle = await producer.submit("slow", {"seconds": 0.3})

        outcome = await handle.wait(timeout=0.01)

        assert outcome.status == OutcomeStatus.TIMED_OUT
        assert not (await producer.get(handle.job_id)).is_terminal

        await asyncio.sleep(0.6)
        job = await producer.get(handle.job_id)
        assert job.state == JobState.COMPLETED
        assert job.result == "done"

    async def test_wait_uses_default_timeout(self, producer: Producer):
        handle = await producer.submit("slow")

        start = asyncio.get_running_loop().time()
        outcome = await handle.wait()
        elapsed = asyncio.get_running_loop().time() - start

        assert outcome.status == OutcomeStatus.TIMED_OUT
        assert elapsed >= 1.9

    async def test_timeout_covers_slow_store_read(
        self, engine: QueueEngine, producer: Producer, monkeypatch: pytest.MonkeyPatch
    ):
        """Test the timeout bounds the initial record read, not only the wait after it."""
        handle = await producer.submit("math", {"n": 1})

        async def stalled(job_id: str) -> Job | None:
            await asyncio.sleep(5)
            return None

        monkeypatch.setattr(engine, "get_job", stalled)

        start = asyncio.get_running_loop().time()
        outcome = await handle.wait(timeout=0.05)
        elapsed = asyncio.get_running_loop().time() - start

        assert outcome.status == OutcomeStatus.TIMED_OUT
        assert elapsed < 1

    async def test_timeout_covers_slow_subscribe(
        self, engine: QueueEngine, producer: Producer, monkeypatch: pytest.MonkeyPatch
    ):
        """Test the timeout bounds subscribing to notifications."""
        handle = await producer.submit("math", {"n": 1})
        make_pubsub = engine.client.pubsub

        def stalled_pubsub(**kwargs):
            pubsub = make_pubsub(**kwargs)

            async def psubscribe(*args, **kwargs):
                await asyncio.sleep(5)

            pubsub.psubscribe = psubscribe
            return pubsub

        monkeypatch.setattr(engine.client, "pubsub", stalled_pubsub)

        start = asyncio.get_running_loop().time()
        outcome = await handle.wait(timeout=0.05)
        elapsed = asyncio.get_running_loop().time() - start

        assert outcome.status == OutcomeStatus.TIMED_OUT
        assert elapsed < 1

    async def test_handler_failure(self, producer: Producer, worker: WorkerRuntime):
        handle = await producer.submit("explode", {"item": "widget"})
        await worker.run_once()

        outcome = await handle.wait(timeout=1)
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error.message == "cannot process widget"

        with pytest.raises(HandlerFailure) as exc_info:
            await handle.result(timeout=1)
        assert exc_info.value.error.type == "ValueError"

    async def test_result_timeout(self, producer: Producer):
        handle = await producer.submit("math", {"n": 1})

        with pytest.raises(TimedOutWait) as exc_info:
            await handle.result(timeout=0.01)

        assert exc_info.value.timeout == 0.01

    async def test_abandoned_job(self, engine: QueueEngine, producer: Producer):
        """Test a waiter learns the job was swept after its worker went silent."""
        handle = await producer.submit("math", {"n": 5})
        await engine.claim("math", "crashed-worker")

        waiter = asyncio.create_task(handle.wait(timeout=5))
        await asyncio.sleep(0.05)
        await engine.sweep_expired(utcnow() + timedelta(seconds=1))
        outcome = await waiter

        assert outcome.status == OutcomeStatus.ABANDONED
        with pytest.raises(AbandonedJob):
            await handle.result(timeout=1)

    async def test_unknown_job(self, producer: Producer):
        with pytest.raises(JobNotFound):
            await producer.wait(JobHandle(producer, "missing", "math", False), timeout=1)

    async def test_auto_cleanup_after_wait(
        self, engine: QueueEngine, producer: Producer, worker: WorkerRuntime
    ):
        """Test the record is deleted once the producer has seen the outcome."""
        handle = await producer.submit("math", {"n": 5}, options=SubmitOptions(auto_cleanup=True))
        await worker.run_once()

        # Unobserved, the finished record would still expire on its own
        assert 0 < await engine.client.ttl(engine.keys.job(handle.job_id)) <= 60

        assert await handle.result(timeout=1) == 25
        assert await producer.get(handle.job_id) is None
        assert await engine.history(handle.job_id) == []

    async def test_record_kept_without_auto_cleanup(
        self, producer: Producer, worker: WorkerRuntime
    ):
        handle = await producer.submit("math", {"n": 5})
        await worker.run_once()

        await handle.result(timeout=1)

        assert (await producer.get(handle.job_id)).state == JobState.COMPLETED


class TestResubmit:
    """Tests for Producer.resubmit and Producer.remove."""

    async def test_resubmit_failed_job(self, producer: Producer, worker: WorkerRuntime):
        """Test that resubmitting creates a fresh job and leaves the original alone."""
        original = await producer.submit("explode", {"item": "widget"}, priority=7)
        await worker.run_once()

        retry = await producer.resubmit(original.job_id)

        assert retry.job_id != original.job_id
        job = await producer.get(retry.job_id)
        assert job.state == JobState.QUEUED
        assert job.payload == {"item": "widget"}
        assert job.priority == 7
        assert (await producer.get(original.job_id)).state == JobState.FAILED

    async def test_resubmit_missing(self, producer: Producer):
        with pytest.raises(JobNotFound):
            await producer.resubmit("missing")

    async def test_remove(self, producer: Producer):
        handle = await producer.submit("math", {"n": 1})

        assert await producer.remove(handle.job_id) is True
        assert await producer.get(handle.job_id) is None
        assert await producer.remove(handle.job_id) is False


class TestSharedListener:
    """Tests for the notification subscription shared by all waits of a producer."""

    async def test_one_subscription_for_many_waiters(
        self,
        engine: QueueEngine,
        producer: Producer,
        running_worker: WorkerRuntime,
        monkeypatch: pytest.MonkeyPatch,
    ):
        # The worker opens its own work signal subscription first
        await asyncio.sleep(0.05)
        make_pubsub = engine.client.pubsub
        created = []

        def counting_pubsub(**kwargs):
            pubsub = make_pubsub(**kwargs)
            created.append(pubsub)
            return pubsub

        monkeypatch.setattr(engine.client, "pubsub", counting_pubsub)
        handles = [await producer.submit("math", {"n": n}) for n in range(20)]

        results = await asyncio.gather(*(handle.result(timeout=5) for handle in handles))

        assert results == [n * n for n in range(20)]
        assert len(created) == 1

    async def test_waiters_exceed_connection_pool(
        self, registry: HandlerRegistry, test_settings: Settings
    ):
        """Test that more concurrent waits than pooled connections all complete."""
        client = FakeRedis(
            server=FakeServer(),
            decode_responses=True,
            connection_pool_class=BlockingConnectionPool,
            max_connections=4,
        )
        engine = QueueEngine(client, test_settings.key_prefix)
        producer = Producer(engine, test_settings)
        worker = WorkerRuntime(engine, registry, worker_id="pool-worker", settings=test_settings)
        task = asyncio.create_task(worker.start())

        try:
            handles = [await producer.submit("math", {"n": n}) for n in range(12)]
            outcomes = await asyncio.gather(*(handle.wait(timeout=10) for handle in handles))
        finally:
            await worker.stop()
            await asyncio.wait_for(task, timeout=5)
            await producer.close()
            await client.aclose()

        assert [outcome.status for outcome in outcomes] == [OutcomeStatus.COMPLETED] * 12
        assert [outcome.result for outcome in outcomes] == [n * n for n in range(12)]

    async def test_waiters_released_after_wait(
        self, producer: Producer, worker: WorkerRuntime
    ):
        handle = await producer.submit("math", {"n": 2})
        waiter = asyncio.create_task(handle.wait(timeout=5))
        await asyncio.sleep(0.05)

        assert handle.job_id in producer._waiters

        await worker.run_once()
        assert (await waiter).result == 4
        assert producer._waiters == {}

    async def test_close_stops_listener(self, producer: Producer, worker: WorkerRuntime):
        """Test close releases the subscription and a later wait starts a new one."""
        handle = await producer.submit("math", {"n": 3})
        await worker.run_once()
        await handle.wait(timeout=1)
        listener = producer._listener

        await producer.close()

        assert listener.done()
        assert producer._listener is None
        assert producer._pubsub is None

        handle = await producer.submit("math", {"n": 4})
        await worker.run_once()
        assert await handle.result(timeout=1) == 16
        assert producer._listener is not None

    async def test_listener_failure_reaches_waiters(
        self, engine: QueueEngine, producer: Producer, monkeypatch: pytest.MonkeyPatch
    ):
        """Test a lost subscription fails pending waits instead of leaving them hanging."""
        handle = await producer.submit("math", {"n": 1})
        make_pubsub = engine.client.pubsub

        def failing_pubsub(**kwargs):
            pubsub = make_pubsub(**kwargs)

            async def get_message(*args, **kwargs):
                await asyncio.sleep(0.05)
                raise RedisConnectionError("Connection lost")

            pubsub.get_message = get_message
            return pubsub

        monkeypatch.setattr(engine.client, "pubsub", failing_pubsub)

        with pytest.raises(RedisConnectionError):
            await handle.wait(timeout=5)
