"""Credential cache — Redis read-through cache in front of CredentialStore.

Learn: Every API-key request needs the credential row, so the row is cached
under its secret hash for ``ttl`` seconds. The hard part is not caching,
it is *forgetting*: after a delete is acknowledged the old row must never
be served again, even if a slow reader loaded it from the database just
before the delete committed.

Two keys per hash:
- ``tollgate:cache:apikey:{hash}``      → JSON snapshot (or negative marker)
- ``tollgate:cache:apikey-gen:{hash}``  → generation counter

A fill WATCHes the generation key *before* reading the store and writes the
entry inside MULTI/EXEC. ``invalidate`` bumps the generation and deletes the
entry in one transaction. Any fill that raced with an invalidation aborts
with WatchError instead of writing back the stale row.

Read failures degrade to a miss (the store is authoritative). Invalidation
failures propagate: a mutation that cannot be forgotten must not report
success.
"""

from typing import Optional

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError, WatchError

from tollgate.auth.context import CredentialRecord
from tollgate.auth.errors import CacheInvalidationFailed
from tollgate.services.credential_store import CredentialStore
from tollgate.services.lookup import bounded

logger = structlog.get_logger()

ENTRY_PREFIX = "tollgate:cache:apikey:"
GENERATION_PREFIX = "tollgate:cache:apikey-gen:"
NEGATIVE_MARKER = "__none__"

_NEGATIVE = object()


class CredentialCache:
    """Read-through, invalidate-on-write credential cache."""

    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        store: CredentialStore,
        ttl: int = 300,
        negative_ttl: int = 5,
        timeout: float = 2.0,
    ):
        self._redis = redis
        self._store = store
        self._ttl = ttl
        self._negative_ttl = negative_ttl
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @staticmethod
    def entry_key(key_hash: str) -> str:
        return f"{ENTRY_PREFIX}{key_hash}"

    @staticmethod
    def generation_key(key_hash: str) -> str:
        return f"{GENERATION_PREFIX}{key_hash}"

    async def get(self, key_hash: str) -> Optional[CredentialRecord]:
        """Return the credential for a hash, or None if none exists."""
        if self._redis is None:
            return await self._load(key_hash)

        cached = await self._read(key_hash)
        if cached is _NEGATIVE:
            return None
        if cached is not None:
            return cached
        return await self._fill(key_hash)

    async def invalidate(self, key_hash: str) -> None:
        """Forget a hash. Raises CacheInvalidationFailed if Redis refuses."""
        if self._redis is None:
            return
        gen_key = self.generation_key(key_hash)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(gen_key)
                # Must outlive any fill in flight; fills are bounded by the
                # lookup timeout, far below the entry TTL.
                pipe.expire(gen_key, max(self._ttl, 60))
                pipe.delete(self.entry_key(key_hash))
                await pipe.execute()
        except RedisError as e:
            logger.error(
                "cache.invalidate_failed",
                key_hash=key_hash[:12],
                error=str(e),
                error_type=type(e).__name__,
            )
            raise CacheInvalidationFailed() from e
        logger.debug("cache.invalidated", key_hash=key_hash[:12])

    # ─── Internals ───────────────────────────────────────

    async def _load(self, key_hash: str) -> Optional[CredentialRecord]:
        return await bounded(
            self._store.find_by_hash(key_hash),
            self._timeout,
            "credential.find_by_hash",
        )

    async def _read(self, key_hash: str):
        try:
            raw = await self._redis.get(self.entry_key(key_hash))
        except RedisError as e:
            logger.warning("cache.read_failed", error=str(e))
            return None
        if raw is None:
            return None
        if raw == NEGATIVE_MARKER:
            return _NEGATIVE
        try:
            return CredentialRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("cache.entry_corrupt", key_hash=key_hash[:12])
            return None

    async def _fill(self, key_hash: str) -> Optional[CredentialRecord]:
        record: Optional[CredentialRecord] = None
        loaded = False
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(self.generation_key(key_hash))
                record = await self._load(key_hash)
                loaded = True
                if record is None and self._negative_ttl <= 0:
                    return None
                pipe.multi()
                if record is not None:
                    pipe.set(
                        self.entry_key(key_hash),
                        record.model_dump_json(),
                        ex=self._ttl,
                    )
                else:
                    pipe.set(
                        self.entry_key(key_hash),
                        NEGATIVE_MARKER,
                        ex=self._negative_ttl,
                    )
                await pipe.execute()
        except WatchError:
            # Invalidated while we were reading. The mutation is committed
            # by now, so read again and leave the cache empty.
            logger.debug("cache.fill_skipped", key_hash=key_hash[:12])
            loaded = False
        except RedisError as e:
            logger.warning("cache.fill_failed", error=str(e))

        if not loaded:
            record = await self._load(key_hash)
        return record
