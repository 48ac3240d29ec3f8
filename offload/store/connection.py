"""
Store connection management.
Handles the async Redis client shared by the queue engine and producers.
"""

import logging

from redis.asyncio import BlockingConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError

from offload.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Global client instance
_client: Redis | None = None


def create_client(settings: Settings | None = None) -> Redis:
    """
    Create an async Redis client.

    Transient network errors are retried inside the client with
    exponential backoff; callers only see errors that outlast the retries.
    When all ``redis_max_connections`` are in use, commands wait up to
    ``redis_pool_timeout_seconds`` for a free connection instead of failing.

    Args:
        settings: Settings to use. Defaults to the cached settings.

    Returns:
        Redis: A client with ``decode_responses`` enabled.
    """
    settings = settings or get_settings()
    retry = Retry(
        ExponentialBackoff(
            cap=settings.redis_retry_backoff_cap_seconds,
            base=settings.redis_retry_backoff_base_seconds,
        ),
        settings.redis_retry_attempts,
    )
    pool = BlockingConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        timeout=settings.redis_pool_timeout_seconds,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        retry=retry,
        retry_on_error=[ConnectionError, TimeoutError],
        decode_responses=True,
    )
    return Redis(connection_pool=pool)


async def init_store(settings: Settings | None = None) -> Redis:
    """
    Initialize the store client.
    Should be called on process startup.
    """
    global _client
    if _client is None:
        _client = create_client(settings)
        logger.info("Store connection initialized")
    return _client


async def close_store() -> None:
    """
    Close the store client.
    Should be called on process shutdown.
    """
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Store connection closed")


def get_client() -> Redis:
    """
    Get the initialized store client.

    Raises:
        RuntimeError: If the store is not initialized.
    """
    if _client is None:
        raise RuntimeError("Store not initialized. Call init_store() first.")
    return _client


def set_client(client: Redis | None) -> None:
    """Inject a client, used by tests."""
    global _client
    _client = client


async def ping(client: Redis | None = None) -> bool:
    """Check that the store answers."""
    if client is None:
        client = get_client()
    try:
        return bool(await client.ping())
    except (ConnectionError, TimeoutError):
        logger.warning("Store ping failed")
        return False
