"""WebSocket endpoint — per-project live events behind the auth core.

Learn: Clients connect to ``/ws`` and are authenticated *before* the
socket is accepted (see ws_auth.py). Rejected handshakes are closed with
an application close code. Accepted sockets are subscribed to their
project's Redis channel ``tollgate:events:{project_id}``:
1. Redis listener: reads from pub/sub, sends to the WebSocket
2. Client listener: answers pings, notices disconnects

When either side finishes, both tasks are cancelled cleanly.
"""

import asyncio
import json
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketState

from tollgate.auth.context import AuthContext
from tollgate.auth.dependencies import Access, get_services
from tollgate.auth.errors import ProjectNotFound
from tollgate.auth.guard import GuardSpec
from tollgate.auth.resolver import ResolveMode
from tollgate.services.container import Services

logger = structlog.get_logger()

# /ws lives at the root, the ticket endpoint under /api/v1
router = APIRouter()
ticket_router = APIRouter(prefix="/ws")

_session_only = Access(
    ResolveMode.SESSION,
    GuardSpec(identity_types={"session"}, require_organization=True),
    rate_limited=False,
)


def project_channel(project_id: uuid.UUID) -> str:
    return f"tollgate:events:{project_id}"


class TicketRequest(BaseModel):
    project_id: uuid.UUID = Field(..., alias="projectId")

    model_config = {"populate_by_name": True}


class TicketResponse(BaseModel):
    ticket: str
    expires_in: int


@ticket_router.post("/ticket", response_model=TicketResponse)
async def create_ws_ticket(
    body: TicketRequest,
    request: Request,
    ctx: AuthContext = Depends(_session_only),
    services: Services = Depends(get_services),
):
    """Issue a one-time WebSocket ticket for a project in the active org."""
    if not await services.directory.project_in_organization(
        body.project_id, ctx.organization_id
    ):
        raise ProjectNotFound()
    ticket = await services.ws_auth.issue_ticket(
        ctx, body.project_id, ip=services.resolver.client_ip(request)
    )
    return TicketResponse(
        ticket=ticket, expires_in=services.settings.ws_ticket_ttl_seconds
    )


@router.websocket("/ws")
async def project_websocket(websocket: WebSocket):
    services: Services = websocket.app.state.services

    # ── Authentication ──────────────────────────────────────
    result = await services.ws_auth.authenticate(websocket)
    if not result.authenticated:
        await websocket.close(code=result.close_code, reason=result.error or "")
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    await websocket.send_json({
        "type": "connected",
        "projectId": str(result.project_id) if result.project_id else None,
        "authType": result.auth_type,
    })
    logger.info(
        "ws.connected",
        auth_type=result.auth_type,
        project_id=str(result.project_id) if result.project_id else None,
    )

    pubsub = None
    channel: Optional[str] = None
    if services.redis is not None and result.project_id is not None:
        pubsub = services.redis.pubsub()
        channel = project_channel(result.project_id)
        await pubsub.subscribe(channel)

    async def redis_listener():
        """Forward Redis messages to the WebSocket client."""
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    await websocket.send_text(message["data"])
        except asyncio.CancelledError:
            pass

    async def client_listener():
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if msg.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    tasks = [asyncio.create_task(client_listener())]
    if pubsub is not None:
        tasks.append(asyncio.create_task(redis_listener()))

    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
    finally:
        if pubsub is not None:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.info("ws.disconnected")
