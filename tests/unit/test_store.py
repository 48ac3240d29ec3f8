"""
Unit tests for the store client lifecycle and key layout.
"""

import pytest
from fakeredis.aioredis import FakeRedis
from redis.asyncio import BlockingConnectionPool

from offload.config import Settings
from offload.store import StoreKeys, create_client, get_client, ping, set_client


class TestStoreClient:
    """Tests for the module-level client."""

    def test_create_client(self):
        """Test that pool settings reach the client without connecting."""
        client = create_client(
            Settings(redis_url="redis://cache.internal:6380/2", redis_max_connections=7)
        )

        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["host"] == "cache.internal"
        assert kwargs["port"] == 6380
        assert kwargs["db"] == 2
        assert kwargs["decode_responses"] is True
        assert client.connection_pool.max_connections == 7

    def test_pool_waits_for_free_connection(self):
        """Test that an exhausted pool blocks for a connection instead of raising."""
        client = create_client(Settings(redis_pool_timeout_seconds=3.5))

        assert isinstance(client.connection_pool, BlockingConnectionPool)
        assert client.connection_pool.timeout == 3.5

    def test_get_client_uninitialized(self):
        set_client(None)
        with pytest.raises(RuntimeError):
            get_client()

    async def test_set_client_and_ping(self, redis_client: FakeRedis):
        set_client(redis_client)
        try:
            assert get_client() is redis_client
            assert await ping() is True
        finally:
            set_client(None)


class TestStoreKeys:
    def test_layout(self):
        keys = StoreKeys("jobs")

        assert keys.job("abc") == "jobs:job:abc"
        assert keys.history("abc") == "jobs:history:abc"
        assert keys.queue("math") == "jobs:queue:math"
        assert keys.events("abc") == "jobs:events:abc"
        assert keys.signal("math") == "jobs:signal:math"
        assert keys.active == "jobs:active"
        assert keys.seq == "jobs:seq"
