"""Identity resolution — who is calling, and in which tenant scope.

Learn: Every inbound request (HTTP or WebSocket handshake) goes through
``AuthResolver.resolve`` exactly once and comes out as an immutable
``AuthContext`` or an ``AuthError``. The decision tree:

1. API-key material? (``x-api-key`` header, or ``Authorization: Bearer``
   whose value starts with ``tg_``). Format check → SHA-256 → cache →
   expiry → IP allow-list → project scope. Anything wrong is a hard
   failure. A present-but-bad key NEVER falls through to the session
   path, otherwise a revoked key plus a stale cookie would still get in.
2. Session token? (cookie, or a Bearer value without our prefix).
   Verify, read the current role, check a requested project belongs to
   the active organization (404 if not, so other tenants' project ids
   are indistinguishable from nonexistent ones).
3. Nothing → 401, or the anonymous context for optional-auth endpoints.

The mode narrows which branches an endpoint accepts.
"""

import enum
import uuid
from datetime import datetime
from typing import Callable, Optional

import structlog
from starlette.requests import HTTPConnection

from tollgate.auth import codec
from tollgate.auth.context import (
    ANONYMOUS,
    ApiKeyContext,
    AuthContext,
    CredentialRecord,
    SessionContext,
)
from tollgate.auth.errors import (
    ExpiredCredential,
    IPNotAllowed,
    MalformedCredential,
    MissingCredential,
    MissingScope,
    ProjectNotFound,
    ScopeMismatch,
    UnknownCredential,
)
from tollgate.auth.ip import is_ip_allowed
from tollgate.auth.session import SessionProvider
from tollgate.db.models import utcnow
from tollgate.events.types import API_KEY_USED, RESOURCE_API_KEY
from tollgate.services.audit import AuditEmitter
from tollgate.services.background import BackgroundTasks
from tollgate.services.credential_cache import CredentialCache
from tollgate.services.credential_store import CredentialStore
from tollgate.services.tenant_directory import TenantDirectory

logger = structlog.get_logger()


class ResolveMode(str, enum.Enum):
    API_KEY = "api_key"    # SDK endpoints; sessions ignored
    SESSION = "session"    # dashboard endpoints; API keys refused
    DUAL = "dual"          # either
    OPTIONAL = "optional"  # either, or anonymous


# ─── Material extraction ─────────────────────────────────


def bearer_token(conn: HTTPConnection) -> Optional[str]:
    header = conn.headers.get("authorization")
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def extract_api_key(conn: HTTPConnection) -> Optional[str]:
    """API-key material from the request, if the caller sent any."""
    header = conn.headers.get("x-api-key")
    if header:
        return header.strip()
    token = bearer_token(conn)
    if token and codec.looks_like_credential(token):
        return token
    return None


def client_ip(conn: HTTPConnection, trust_forwarded_for: bool = False) -> Optional[str]:
    """Peer address; the first X-Forwarded-For hop only behind a trusted proxy."""
    if trust_forwarded_for:
        forwarded = conn.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return conn.client.host if conn.client else None


# ─── Resolver ────────────────────────────────────────────


class AuthResolver:
    def __init__(
        self,
        cache: CredentialCache,
        store: CredentialStore,
        directory: TenantDirectory,
        sessions: SessionProvider,
        background: BackgroundTasks,
        audit: AuditEmitter,
        session_cookie_name: str = "tollgate_session",
        trust_forwarded_for: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._cache = cache
        self._store = store
        self._directory = directory
        self._sessions = sessions
        self._background = background
        self._audit = audit
        self._cookie_name = session_cookie_name
        self._trust_forwarded_for = trust_forwarded_for
        self._clock = clock

    def client_ip(self, conn: HTTPConnection) -> Optional[str]:
        return client_ip(conn, self._trust_forwarded_for)

    def session_token(self, conn: HTTPConnection) -> Optional[str]:
        token = conn.cookies.get(self._cookie_name)
        if token:
            return token
        bearer = bearer_token(conn)
        if bearer and not codec.looks_like_credential(bearer):
            return bearer
        return None

    async def resolve(
        self,
        conn: HTTPConnection,
        mode: ResolveMode = ResolveMode.DUAL,
        project_id: Optional[uuid.UUID] = None,
        credential: Optional[str] = None,
    ) -> AuthContext:
        """Build the AuthContext for one request or handshake.

        ``credential`` overrides header extraction (WebSocket query param).
        """
        secret = credential or extract_api_key(conn)

        if secret is not None:
            if mode == ResolveMode.SESSION:
                raise MissingCredential(
                    "This endpoint requires a dashboard session. API keys are not accepted."
                )
            ctx = await self._resolve_api_key(conn, secret, project_id)
        else:
            if mode == ResolveMode.API_KEY:
                raise MissingCredential(
                    "API key required. Use the x-api-key header or Authorization: Bearer."
                )
            ctx = await self._resolve_session(conn, project_id)
            if ctx is None:
                if mode == ResolveMode.OPTIONAL:
                    return ANONYMOUS
                raise MissingCredential()

        structlog.contextvars.bind_contextvars(
            auth_type=ctx.type,
            organization_id=str(ctx.organization_id) if ctx.organization_id else None,
        )
        return ctx

    # ─── API-key path ────────────────────────────────────

    async def _resolve_api_key(
        self,
        conn: HTTPConnection,
        secret: str,
        project_id: Optional[uuid.UUID],
    ) -> ApiKeyContext:
        if not codec.validate_format(secret):
            logger.info("auth.credential_malformed", key_prefix=codec.display_prefix(secret))
            raise MalformedCredential()

        record = await self._cache.get(codec.hash_secret(secret))
        if record is None:
            logger.info("auth.credential_unknown", key_prefix=codec.display_prefix(secret))
            raise UnknownCredential()

        if record.is_expired(self._clock()):
            logger.info("auth.credential_expired", api_key_id=str(record.id))
            raise ExpiredCredential()

        ip = self.client_ip(conn)
        if record.allowed_ips and not is_ip_allowed(ip, record.allowed_ips):
            logger.info("auth.ip_not_allowed", api_key_id=str(record.id), client_ip=ip)
            raise IPNotAllowed()

        scoped_project = await self._scope_api_key(record, project_id)

        self._background.spawn(
            self._store.touch_last_used(record.id), label="touch_last_used"
        )
        if self._audit.should_sample_usage():
            self._audit.emit(
                API_KEY_USED,
                user_id=record.user_id,
                organization_id=record.organization_id,
                api_key_id=record.id,
                resource_type=RESOURCE_API_KEY,
                resource_id=str(record.id),
                ip=ip,
                metadata={"path": conn.url.path},
            )

        return ApiKeyContext(
            credential=record,
            organization_id=record.organization_id,
            project_id=scoped_project,
        )

    async def _scope_api_key(
        self, record: CredentialRecord, project_id: Optional[uuid.UUID]
    ) -> Optional[uuid.UUID]:
        """Project the key acts on; ScopeMismatch if it may not act on it."""
        if project_id is None or project_id == record.project_id:
            return record.project_id
        if record.project_id is not None or record.organization_id is None:
            raise ScopeMismatch()
        owner = await self._directory.project_organization(project_id)
        if owner != record.organization_id:
            raise ScopeMismatch()
        return project_id

    # ─── Session path ────────────────────────────────────

    async def _resolve_session(
        self, conn: HTTPConnection, project_id: Optional[uuid.UUID]
    ) -> Optional[SessionContext]:
        token = self.session_token(conn)
        if not token:
            return None
        session = await self._sessions.resolve(token)
        if session is None:
            return None

        if project_id is not None:
            if session.organization_id is None:
                raise MissingScope()
            if not await self._directory.project_in_organization(
                project_id, session.organization_id
            ):
                logger.info(
                    "auth.project_not_in_organization",
                    user_id=str(session.user_id),
                    project_id=str(project_id),
                )
                raise ProjectNotFound()

        return SessionContext(
            user_id=session.user_id,
            organization_id=session.organization_id,
            role=session.role,
            two_factor_enabled=session.two_factor_enabled,
            project_id=project_id,
        )
