"""WebSocket handshake authentication.

Learn: Browsers cannot set headers on a WebSocket handshake, so besides
the usual header credentials a client may present:
- ``?ticket=<uuid>``: a one-time ticket from ``POST /api/v1/ws/ticket``
  (session-authenticated). Tickets live 30 s in Redis and are consumed
  with GETDEL, so a leaked URL cannot be replayed. With ``check_ip`` on,
  the redeeming peer must match the one that asked for the ticket.
- ``?api_key=tg_...``: for SDKs that cannot set headers.
- the session cookie, plus ``?projectId=``.

Everything except tickets goes through the same AuthResolver as HTTP.
Results map onto close codes: 4001 unauthenticated, 4003 out of scope,
4000 malformed request.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from starlette.requests import HTTPConnection

from tollgate.auth.context import SessionContext
from tollgate.auth.errors import AuthError, TicketsUnavailable
from tollgate.auth.resolver import AuthResolver, ResolveMode

logger = structlog.get_logger()

TICKET_PREFIX = "tollgate:ws:ticket:"

CLOSE_BAD_REQUEST = 4000
CLOSE_UNAUTHORIZED = 4001
CLOSE_FORBIDDEN = 4003


@dataclass(frozen=True)
class WSAuthResult:
    authenticated: bool
    organization_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    auth_type: Optional[str] = None
    error: Optional[str] = None
    close_code: Optional[int] = None

    @classmethod
    def denied(cls, error: str, close_code: int = CLOSE_UNAUTHORIZED) -> "WSAuthResult":
        return cls(authenticated=False, error=error, close_code=close_code)


def _close_code(error: AuthError) -> int:
    if error.status_code in (403, 404):
        return CLOSE_FORBIDDEN
    return CLOSE_UNAUTHORIZED


class WebSocketAuthenticator:
    def __init__(
        self,
        resolver: AuthResolver,
        redis: Optional[aioredis.Redis],
        ticket_ttl: int = 30,
        check_ip: bool = False,
    ):
        self._resolver = resolver
        self._redis = redis
        self._ticket_ttl = ticket_ttl
        self._check_ip = check_ip

    # ─── Tickets ─────────────────────────────────────────

    async def issue_ticket(
        self,
        ctx: SessionContext,
        project_id: uuid.UUID,
        ip: Optional[str] = None,
    ) -> str:
        """Store a one-time ticket for an already authorized session."""
        if self._redis is None:
            raise TicketsUnavailable()
        ticket = str(uuid.uuid4())
        data = {
            "project_id": str(project_id),
            "organization_id": str(ctx.organization_id),
            "user_id": str(ctx.user_id),
            "ip": ip,
        }
        try:
            await self._redis.set(
                f"{TICKET_PREFIX}{ticket}", json.dumps(data), ex=self._ticket_ttl
            )
        except RedisError as e:
            logger.error("ws.ticket_store_failed", error=str(e))
            raise TicketsUnavailable() from e
        logger.info("ws.ticket_issued", user_id=str(ctx.user_id), project_id=str(project_id))
        return ticket

    async def _redeem(self, ticket: str, ip: Optional[str]) -> WSAuthResult:
        if self._redis is None:
            return WSAuthResult.denied("WebSocket tickets are not available")
        try:
            raw = await self._redis.getdel(f"{TICKET_PREFIX}{ticket}")
        except RedisError as e:
            logger.error("ws.ticket_redeem_failed", error=str(e))
            return WSAuthResult.denied("Ticket store unavailable")
        if raw is None:
            logger.info("ws.ticket_invalid")
            return WSAuthResult.denied("Invalid or expired ticket")

        data = json.loads(raw)
        if self._check_ip and data.get("ip") != ip:
            # Behind a proxy this needs trust_forwarded_for
            logger.warning("ws.ticket_ip_mismatch", expected=data.get("ip"), actual=ip)
            return WSAuthResult.denied("IP mismatch")
        return WSAuthResult(
            authenticated=True,
            organization_id=uuid.UUID(data["organization_id"]),
            project_id=uuid.UUID(data["project_id"]),
            user_id=uuid.UUID(data["user_id"]),
            auth_type="session",
        )

    # ─── Handshake ───────────────────────────────────────

    async def authenticate(self, conn: HTTPConnection) -> WSAuthResult:
        ticket = conn.query_params.get("ticket")
        if ticket:
            return await self._redeem(ticket, self._resolver.client_ip(conn))

        project_id = None
        raw_project = conn.query_params.get("projectId")
        if raw_project:
            try:
                project_id = uuid.UUID(raw_project)
            except ValueError:
                return WSAuthResult.denied("Invalid projectId", CLOSE_BAD_REQUEST)

        try:
            ctx = await self._resolver.resolve(
                conn,
                ResolveMode.DUAL,
                project_id=project_id,
                credential=conn.query_params.get("api_key"),
            )
        except AuthError as e:
            logger.info("ws.auth_denied", code=e.code)
            return WSAuthResult.denied(e.message, _close_code(e))

        if isinstance(ctx, SessionContext) and ctx.project_id is None:
            return WSAuthResult.denied(
                "projectId required for session auth", CLOSE_BAD_REQUEST
            )

        return WSAuthResult(
            authenticated=True,
            organization_id=ctx.organization_id,
            project_id=ctx.project_id,
            user_id=ctx.user_id,
            auth_type=ctx.type,
        )
