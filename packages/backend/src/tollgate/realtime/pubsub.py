"""Redis client lifecycle and pub/sub publishing.

Learn: Redis pub/sub is fire-and-forget. If no one is subscribed, the
message is lost. That is acceptable for the audit channel: a downstream
consumer persists what it receives, and delivery failures never block
the request that produced the event.

The client is created once in the app lifespan and handed to services;
there is no module-level connection.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from tollgate.config import Settings

logger = structlog.get_logger()


async def create_redis(settings: Settings) -> Optional[aioredis.Redis]:
    """Open the Redis pool, or return None when no Redis is configured."""
    if not settings.redis_url:
        logger.warning(
            "redis.not_configured",
            detail="credential cache, rate limiting and login lockout disabled",
        )
        return None
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )
    # Verify connection
    await client.ping()
    logger.info("redis.connected")
    return client


async def close_redis(client: Optional[aioredis.Redis]) -> None:
    if client is not None:
        await client.aclose()


async def publish_json(
    client: aioredis.Redis,
    channel: str,
    data: dict[str, Any],
) -> int:
    """Publish a JSON document. Returns the number of subscribers reached."""
    payload = json.dumps(data, default=str)
    return await client.publish(channel, payload)
