"""Password-login brute-force protection.

Learn: Failed logins are counted per identifier (email) in Redis:
``tollgate:login:attempts:{sha256(normalized email)}``. The counter gets
its TTL when it is created, so a lockout lasts at most one window from
the first failure. Once the count reaches ``max_attempts`` further
attempts are refused with the key's remaining TTL as ``retry_after``. A
successful login deletes the counter.

The email is hashed so Redis never holds the plaintext address, and
logs only carry a masked form.

Failure policy:
- ``check_allowed`` and ``reserve`` fail CLOSED. If we cannot tell whether
  an account is locked, we refuse the attempt for the full window.
- ``record_failure`` / ``clear`` fail open with an error log.

``LoginGate`` reserves the failure slot before the password check, so
parallel guesses cannot all slip past a count that has not been bumped yet.
"""

import hashlib
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from tollgate.auth.errors import AccountLocked, InvalidLogin
from tollgate.events.types import USER_ACCOUNT_LOCKED, USER_LOGIN_FAILED

logger = structlog.get_logger()

KEY_PREFIX = "tollgate:login:attempts:"

T = TypeVar("T")


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


def mask_identifier(identifier: str) -> str:
    """``john@example.com`` → ``jo***@example.com``."""
    local, sep, domain = normalize_identifier(identifier).partition("@")
    return f"{local[:2]}***{sep}{domain}"


@dataclass(frozen=True)
class LoginDecision:
    allowed: bool
    retry_after_seconds: Optional[int] = None
    attempts: int = 0


class LoginAttemptTracker:
    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        max_attempts: int = 5,
        lockout_seconds: int = 900,
    ):
        self._redis = redis
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds

    @staticmethod
    def key(identifier: str) -> str:
        digest = hashlib.sha256(normalize_identifier(identifier).encode("utf-8"))
        return f"{KEY_PREFIX}{digest.hexdigest()}"

    async def check_allowed(self, identifier: str) -> LoginDecision:
        if self._redis is None:
            return LoginDecision(allowed=True)
        key = self.key(identifier)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.get(key)
                pipe.ttl(key)
                raw, ttl = await pipe.execute()
        except RedisError as e:
            logger.error(
                "login.check_failed",
                identifier=mask_identifier(identifier),
                error=str(e),
            )
            return LoginDecision(
                allowed=False, retry_after_seconds=self.lockout_seconds
            )

        attempts = int(raw) if raw is not None else 0
        if attempts >= self.max_attempts:
            retry_after = ttl if ttl and ttl > 0 else self.lockout_seconds
            return LoginDecision(
                allowed=False, retry_after_seconds=retry_after, attempts=attempts
            )
        return LoginDecision(allowed=True, attempts=attempts)

    async def _increment(self, key: str) -> tuple[int, int]:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.ttl(key)
            count, ttl = await pipe.execute()
        # First failure creates the key; -1 also repairs a key whose
        # EXPIRE was lost.
        if count == 1 or ttl == -1:
            await self._redis.expire(key, self.lockout_seconds)
            ttl = self.lockout_seconds
        return int(count), ttl

    async def reserve(self, identifier: str) -> LoginDecision:
        """Count the attempt as a failure up front.

        INCR is atomic, so concurrent attempts each get their own slot and
        at most ``max_attempts`` of them reach the password check. The
        caller clears the counter when the attempt succeeds. Fails closed
        like ``check_allowed``.
        """
        if self._redis is None:
            return LoginDecision(allowed=True)
        try:
            count, ttl = await self._increment(self.key(identifier))
        except RedisError as e:
            logger.error(
                "login.reserve_failed",
                identifier=mask_identifier(identifier),
                error=str(e),
            )
            return LoginDecision(
                allowed=False, retry_after_seconds=self.lockout_seconds
            )

        if count > self.max_attempts:
            retry_after = ttl if ttl and ttl > 0 else self.lockout_seconds
            return LoginDecision(
                allowed=False, retry_after_seconds=retry_after, attempts=count - 1
            )
        return LoginDecision(allowed=True, attempts=count)

    async def record_failure(self, identifier: str) -> int:
        """Count one failure. Returns the new count (0 if not recorded)."""
        if self._redis is None:
            return 0
        try:
            count, _ = await self._increment(self.key(identifier))
        except RedisError as e:
            logger.error(
                "login.record_failed",
                identifier=mask_identifier(identifier),
                error=str(e),
            )
            return 0
        return count

    async def clear(self, identifier: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(self.key(identifier))
        except RedisError as e:
            logger.error(
                "login.clear_failed",
                identifier=mask_identifier(identifier),
                error=str(e),
            )


class LoginGate:
    """Wraps a password verifier with lockout checks and audit events.

    Learn: ``verify`` is the caller's password check. It returns whatever
    the caller wants back on success (usually the User) or None on
    failure. The gate never sees the password itself.
    """

    def __init__(self, tracker: LoginAttemptTracker, audit):
        self._tracker = tracker
        self._audit = audit

    async def attempt(
        self,
        identifier: str,
        verify: Callable[[], Awaitable[Optional[T]]],
        ip: Optional[str] = None,
    ) -> T:
        masked = mask_identifier(identifier)
        decision = await self._tracker.reserve(identifier)
        if not decision.allowed:
            retry_after = decision.retry_after_seconds or self._tracker.lockout_seconds
            logger.info("login.blocked", identifier=masked, retry_after=retry_after)
            self._audit.emit(
                USER_ACCOUNT_LOCKED,
                metadata={"identifier": masked, "blocked": True},
                ip=ip,
            )
            raise AccountLocked(retry_after=retry_after)

        result = await verify()
        if result is not None:
            await self._tracker.clear(identifier)
            return result

        attempts = decision.attempts
        logger.info("login.failed", identifier=masked, attempts=attempts)
        self._audit.emit(
            USER_LOGIN_FAILED,
            metadata={"identifier": masked, "attempts": attempts},
            ip=ip,
        )
        if attempts >= self._tracker.max_attempts:
            logger.warning("login.account_locked", identifier=masked)
            self._audit.emit(
                USER_ACCOUNT_LOCKED,
                metadata={"identifier": masked, "attempts": attempts},
                ip=ip,
            )
        raise InvalidLogin()
