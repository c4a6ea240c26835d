"""Audit emitter — fire-and-forget security events.

Learn: Audit persistence belongs to another service. This core only
*emits*: every event is logged through structlog immediately and then
delivered in the background to the Redis audit channel (and, in tests,
to an in-process sink). Delivery failures are logged by BackgroundTasks
and never reach the request that produced the event.

``api_key.used`` fires on every authenticated API-key request, so it is
sampled (``audit_key_usage_sample_rate``, 0 = never).
"""

import random
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
import structlog

from tollgate.db.models import utcnow
from tollgate.realtime.pubsub import publish_json
from tollgate.services.background import BackgroundTasks

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuditEvent:
    action: str
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    api_key_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


AuditSink = Callable[[AuditEvent], Awaitable[None]]


def _str(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value is not None else None


class AuditEmitter:
    def __init__(
        self,
        background: BackgroundTasks,
        redis: Optional[aioredis.Redis] = None,
        channel: str = "tollgate:audit",
        sink: Optional[AuditSink] = None,
        usage_sample_rate: float = 0.0,
        rng: Callable[[], float] = random.random,
    ):
        self._background = background
        self._redis = redis
        self._channel = channel
        self._sink = sink
        self._usage_sample_rate = usage_sample_rate
        self._rng = rng

    def emit(
        self,
        action: str,
        *,
        user_id: Optional[uuid.UUID] = None,
        organization_id: Optional[uuid.UUID] = None,
        api_key_id: Optional[uuid.UUID] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        ip: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        """Record an event. Never raises, never blocks on delivery."""
        event = AuditEvent(
            action=action,
            user_id=_str(user_id),
            organization_id=_str(organization_id),
            api_key_id=_str(api_key_id),
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip,
            metadata=metadata or {},
        )
        logger.info(
            "audit.event",
            action=action,
            user_id=event.user_id,
            organization_id=event.organization_id,
            api_key_id=event.api_key_id,
            resource_id=resource_id,
        )
        if self._sink is not None or self._redis is not None:
            self._background.spawn(self._deliver(event), label=f"audit:{action}")
        return event

    def should_sample_usage(self) -> bool:
        return self._usage_sample_rate > 0 and self._rng() < self._usage_sample_rate

    async def _deliver(self, event: AuditEvent) -> None:
        if self._sink is not None:
            await self._sink(event)
        if self._redis is not None:
            await publish_json(self._redis, self._channel, event.to_dict())
