"""
Redis client construction for the queued execution backend.

Provides:
- Async Redis client with connection pooling, built from settings
- Connection check and graceful close

The client is created once by the queue adapter and owned by the queued
strategy; nothing here keeps module-level state.
"""

from typing import Optional

import structlog
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from libs.common.settings import Settings

logger = structlog.get_logger(__name__)


def create_redis_client(settings: Settings) -> redis.Redis:
    """
    Create an async Redis client for the queue backend.

    Args:
        settings: Application settings (host, port, db, timeouts)

    Returns:
        Redis client (not yet connected - connections are opened lazily)
    """
    timeout = settings.redis_connection_timeout_ms / 1000
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        encoding="utf-8",
        decode_responses=True,  # Job ids and payloads are handled as str
        max_connections=20,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        retry_on_timeout=True,
    )
    logger.info(
        "Redis client created",
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
    )
    return client


async def check_connection(client: redis.Redis) -> None:
    """
    Verify the client can talk to Redis.

    Raises:
        RedisError: If the server does not answer PING
    """
    response = await client.ping()
    if response is not True:
        raise RedisConnectionError(f"Unexpected PING response: {response!r}")


async def close_redis_client(client: Optional[redis.Redis]) -> None:
    """Close Redis client connection."""
    if client is None:
        return
    try:
        await client.aclose()
        logger.info("Redis client closed")
    except RedisError as e:
        logger.warning("Error closing Redis client", error=str(e))
