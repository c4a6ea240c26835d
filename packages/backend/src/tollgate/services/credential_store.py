"""Credential store — the durable source of truth for API keys.

Learn: The store owns the ``api_keys`` table and nothing else. Two rules
make the cache in front of it safe:

1. ``update`` and ``delete`` commit first, then await every registered
   invalidation hook with the key's hash *before* returning. A caller
   that sees success knows no cache will serve the old row afterwards.
   If invalidation fails the exception propagates, so the caller reports
   failure instead of a success it cannot guarantee.
2. The hash is immutable after issuance, so one hash identifies every
   cache entry a credential can have.

``touch_last_used`` is the opposite: best-effort, run in the background
by the resolver, never on the request path.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tollgate.auth.context import CredentialRecord
from tollgate.auth.errors import AuthError
from tollgate.db.models import DEFAULT_PERMISSIONS, ApiKey, utcnow

logger = structlog.get_logger()

InvalidationHook = Callable[[str], Awaitable[None]]


class CredentialNotFound(LookupError):
    """No API key with the given id."""


@dataclass
class CredentialSpec:
    """Everything needed to persist a new credential (hash, never secret)."""

    name: str
    key_hash: str
    key_prefix: str
    user_id: uuid.UUID
    organization_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None
    permissions: list[str] = field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    rate_limit: int = 1000
    allowed_ips: list[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None


class CredentialStore:
    """CRUD over api_keys with synchronous cache invalidation."""

    UPDATABLE_FIELDS = frozenset({"name", "rate_limit", "permissions", "allowed_ips"})

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._hooks: list[InvalidationHook] = []

    def add_invalidation_hook(self, hook: InvalidationHook) -> None:
        self._hooks.append(hook)

    async def _invalidate(self, key_hash: str) -> None:
        for hook in self._hooks:
            await hook(key_hash)

    # ─── Create ──────────────────────────────────────────

    async def create(self, spec: CredentialSpec) -> CredentialRecord:
        api_key = ApiKey(
            name=spec.name,
            key_hash=spec.key_hash,
            key_prefix=spec.key_prefix,
            user_id=spec.user_id,
            organization_id=spec.organization_id,
            project_id=spec.project_id,
            permissions=list(spec.permissions),
            rate_limit=spec.rate_limit,
            allowed_ips=list(spec.allowed_ips),
            expires_at=spec.expires_at,
        )
        async with self._session_factory() as db:
            db.add(api_key)
            await db.commit()
        record = CredentialRecord.model_validate(api_key)

        # Clears any negative-cache entry for this hash. The row is already
        # durable, so a failure here only delays visibility by the short
        # negative TTL.
        try:
            await self._invalidate(record.key_hash)
        except AuthError as e:
            logger.warning(
                "credential.create_invalidate_failed",
                api_key_id=str(record.id),
                error=e.message,
            )
        logger.info(
            "credential.created",
            api_key_id=str(record.id),
            key_prefix=record.key_prefix,
            organization_id=str(record.organization_id) if record.organization_id else None,
        )
        return record

    # ─── Read ────────────────────────────────────────────

    async def find_by_hash(self, key_hash: str) -> Optional[CredentialRecord]:
        async with self._session_factory() as db:
            result = await db.execute(select(ApiKey).where(ApiKey.key_hash == key_hash))
            api_key = result.scalars().first()
            return CredentialRecord.model_validate(api_key) if api_key else None

    async def get(self, api_key_id: uuid.UUID) -> Optional[CredentialRecord]:
        async with self._session_factory() as db:
            api_key = await db.get(ApiKey, api_key_id)
            return CredentialRecord.model_validate(api_key) if api_key else None

    async def list_for_organization(
        self,
        organization_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> list[CredentialRecord]:
        """Keys in an organization, optionally only those one user owns."""
        q = (
            select(ApiKey)
            .where(ApiKey.organization_id == organization_id)
            .order_by(ApiKey.created_at.desc())
        )
        if user_id is not None:
            q = q.where(ApiKey.user_id == user_id)
        async with self._session_factory() as db:
            result = await db.execute(q)
            return [CredentialRecord.model_validate(k) for k in result.scalars().all()]

    # ─── Mutate ──────────────────────────────────────────

    async def update(
        self, api_key_id: uuid.UUID, patch: dict[str, Any]
    ) -> CredentialRecord:
        """Partial update; returns only after the cache forgot the old row."""
        unknown = set(patch) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        async with self._session_factory() as db:
            api_key = await db.get(ApiKey, api_key_id)
            if api_key is None:
                raise CredentialNotFound(str(api_key_id))
            for name, value in patch.items():
                setattr(api_key, name, list(value) if isinstance(value, (list, tuple)) else value)
            await db.commit()
            record = CredentialRecord.model_validate(api_key)

        await self._invalidate(record.key_hash)
        logger.info(
            "credential.updated",
            api_key_id=str(record.id),
            fields=sorted(patch),
        )
        return record

    async def delete(self, api_key_id: uuid.UUID) -> CredentialRecord:
        """Remove a key; returns only after the cache forgot it."""
        async with self._session_factory() as db:
            api_key = await db.get(ApiKey, api_key_id)
            if api_key is None:
                raise CredentialNotFound(str(api_key_id))
            record = CredentialRecord.model_validate(api_key)
            await db.delete(api_key)
            await db.commit()

        await self._invalidate(record.key_hash)
        logger.info("credential.deleted", api_key_id=str(record.id))
        return record

    async def touch_last_used(self, api_key_id: uuid.UUID) -> None:
        """Record usage. Callers run this in the background."""
        async with self._session_factory() as db:
            await db.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key_id)
                .values(last_used_at=self._clock())
            )
            await db.commit()
