"""Per-credential rate limiting — Redis fixed-window counters.

Learn: Each credential gets one counter per window:
``tollgate:rl:key:{credential_id}:{window_index}`` where
``window_index = now // window_seconds``. INCR and EXPIRE run in one
MULTI/EXEC, so concurrent requests on any number of API instances see
strictly increasing counts and the limit is never exceeded inside a
window. At a window boundary a client can spend two windows back to back
(up to 2× the limit in a short burst).

The limit comes from the credential snapshot the resolver already holds,
so a limit change applies on the first request after the update's cache
invalidation.

Redis errors deny with 503 unless ``fail_open`` is set. Without Redis at
all the limiter is disabled (development only, see config.py).
"""

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from tollgate.auth.errors import RateLimitExceeded, RateLimitUnavailable

logger = structlog.get_logger()

KEY_PREFIX = "tollgate:rl:key:"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # unix seconds
    retry_after: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimiter:
    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        window_seconds: int = 3600,
        fail_open: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis
        self.window_seconds = window_seconds
        self._fail_open = fail_open
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def check(
        self, credential_id: uuid.UUID, limit: int
    ) -> Optional[RateLimitDecision]:
        """Count one request. Returns None when limiting is not in effect."""
        if self._redis is None:
            return None

        now = self._clock()
        window = int(now // self.window_seconds)
        reset_at = (window + 1) * self.window_seconds
        key = f"{KEY_PREFIX}{credential_id}:{window}"

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.window_seconds)
                count, _ = await pipe.execute()
        except RedisError as e:
            if self._fail_open:
                logger.warning(
                    "rate_limit.backend_error_fail_open",
                    credential_id=str(credential_id),
                    error=str(e),
                )
                return None
            logger.error(
                "rate_limit.backend_error",
                credential_id=str(credential_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RateLimitUnavailable() from e

        count = int(count)
        return RateLimitDecision(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after=max(1, int(reset_at - now)),
        )

    async def enforce(
        self, credential_id: uuid.UUID, limit: int
    ) -> Optional[RateLimitDecision]:
        """Like ``check`` but raises RateLimitExceeded when over the limit."""
        decision = await self.check(credential_id, limit)
        if decision is not None and not decision.allowed:
            logger.info(
                "rate_limit.exceeded",
                credential_id=str(credential_id),
                limit=limit,
                retry_after=decision.retry_after,
            )
            raise RateLimitExceeded(
                limit=limit,
                window_seconds=self.window_seconds,
                retry_after=decision.retry_after,
            )
        return decision
