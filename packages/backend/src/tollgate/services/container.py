"""Service container — one place that wires the access-control core.

Learn: Nothing in this package is a module-level singleton. The app
lifespan (main.py) calls ``build_services`` once with the engine's
session factory and the Redis client, stores the result on
``app.state.services``, and FastAPI dependencies read it from there.
Tests build the same container over SQLite and fakeredis, so the code
under test is exactly the code that runs in production.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tollgate.auth.resolver import AuthResolver
from tollgate.auth.session import JwtSessionProvider, SessionProvider
from tollgate.config import Settings
from tollgate.db.models import utcnow
from tollgate.realtime.ws_auth import WebSocketAuthenticator
from tollgate.services.audit import AuditEmitter, AuditSink
from tollgate.services.background import BackgroundTasks
from tollgate.services.credential_cache import CredentialCache
from tollgate.services.credential_store import CredentialStore
from tollgate.services.login_tracker import LoginAttemptTracker, LoginGate
from tollgate.services.rate_limiter import RateLimiter
from tollgate.services.tenant_directory import TenantDirectory

logger = structlog.get_logger()


@dataclass
class Services:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    redis: Optional[aioredis.Redis]
    background: BackgroundTasks
    audit: AuditEmitter
    store: CredentialStore
    cache: CredentialCache
    directory: TenantDirectory
    sessions: SessionProvider
    resolver: AuthResolver
    rate_limiter: RateLimiter
    login_tracker: LoginAttemptTracker
    login_gate: LoginGate
    ws_auth: WebSocketAuthenticator

    async def drain(self, timeout: float = 5.0) -> None:
        await self.background.drain(timeout)


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Optional[aioredis.Redis],
    *,
    audit_sink: Optional[AuditSink] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    if redis is None:
        logger.warning(
            "services.redis_disabled",
            detail="credential cache pass-through, rate limiter and lockout off",
        )

    background = BackgroundTasks()
    audit = AuditEmitter(
        background,
        redis=redis,
        channel=settings.audit_channel,
        sink=audit_sink,
        usage_sample_rate=settings.audit_key_usage_sample_rate,
    )

    store = CredentialStore(session_factory, clock=clock)
    cache = CredentialCache(
        redis,
        store,
        ttl=settings.credential_cache_ttl_seconds,
        negative_ttl=settings.credential_negative_cache_ttl_seconds,
        timeout=settings.lookup_timeout_seconds,
    )
    store.add_invalidation_hook(cache.invalidate)

    directory = TenantDirectory(session_factory, timeout=settings.lookup_timeout_seconds)
    sessions = JwtSessionProvider(settings, directory)
    resolver = AuthResolver(
        cache=cache,
        store=store,
        directory=directory,
        sessions=sessions,
        background=background,
        audit=audit,
        session_cookie_name=settings.session_cookie_name,
        trust_forwarded_for=settings.trust_forwarded_for,
        clock=clock,
    )

    rate_limiter = RateLimiter(
        redis,
        window_seconds=settings.rate_limit_window_seconds,
        fail_open=settings.rate_limit_fail_open,
    )
    login_tracker = LoginAttemptTracker(
        redis,
        max_attempts=settings.login_max_attempts,
        lockout_seconds=settings.login_lockout_seconds,
    )

    return Services(
        settings=settings,
        session_factory=session_factory,
        redis=redis,
        background=background,
        audit=audit,
        store=store,
        cache=cache,
        directory=directory,
        sessions=sessions,
        resolver=resolver,
        rate_limiter=rate_limiter,
        login_tracker=login_tracker,
        login_gate=LoginGate(login_tracker, audit),
        ws_auth=WebSocketAuthenticator(
            resolver,
            redis,
            ticket_ttl=settings.ws_ticket_ttl_seconds,
            check_ip=settings.ws_ticket_check_ip,
        ),
    )
