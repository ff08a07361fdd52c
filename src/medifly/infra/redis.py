"""Async Redis client lifespan dependency.

``build_redis`` creates a Redis client, verifies the connection, and
falls back to ``None`` when Redis is unreachable.  The embedding cache
declares ``Depends(build_redis)`` and keeps an in-process cache when it
receives ``None``.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from redis.asyncio import Redis
from redis.exceptions import RedisError

from medifly.configs.config import AppConfig, get_app_config

logger = logging.getLogger(__name__)


async def build_redis(
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[Redis | None, None]:
    """Create a Redis client; yield ``None`` if unreachable."""
    client = Redis.from_url(config.third_party.redis_uri, decode_responses=True)
    verified: Redis | None = None
    try:
        await client.ping()
        verified = client
    except (RedisError, OSError):
        logger.warning("Redis unavailable -- embedding cache stays in-process.")

    yield verified

    await client.aclose()
