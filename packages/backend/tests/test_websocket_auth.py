"""WebSocket handshake authentication — tickets, query keys, close codes.

Learn: ``WebSocketAuthenticator.authenticate`` only needs the handshake's
HTTPConnection, so these tests hand it a websocket ASGI scope directly.
Tickets are issued through the real HTTP endpoint.
"""

from urllib.parse import urlencode

import pytest
from starlette.requests import HTTPConnection

from conftest import issue_key, session_headers
from tollgate.realtime.ws_auth import (
    CLOSE_BAD_REQUEST,
    CLOSE_FORBIDDEN,
    CLOSE_UNAUTHORIZED,
    TICKET_PREFIX,
)


def handshake(params=None, headers=None, client_ip="203.0.113.10") -> HTTPConnection:
    scope = {
        "type": "websocket",
        "scheme": "ws",
        "server": ("test", 80),
        "path": "/ws",
        "root_path": "",
        "query_string": urlencode(params or {}).encode(),
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (client_ip, 50000),
    }
    return HTTPConnection(scope)


async def _ticket(client, user, org, project):
    r = await client.post(
        "/api/v1/ws/ticket",
        json={"projectId": str(project.id)},
        headers=session_headers(user, org),
    )
    return r


# ═══════════════════════════════════════════════════════════
# Tickets
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_ticket_issued_and_redeemed_once(client, services, tenants, redis):
    r = await _ticket(client, tenants.member, tenants.org_a, tenants.p1)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["expires_in"] == 30
    assert 0 < await redis.ttl(f"{TICKET_PREFIX}{body['ticket']}") <= 30

    first = await services.ws_auth.authenticate(handshake({"ticket": body["ticket"]}))
    assert first.authenticated
    assert first.project_id == tenants.p1.id
    assert first.organization_id == tenants.org_a.id
    assert first.user_id == tenants.member.id

    replay = await services.ws_auth.authenticate(handshake({"ticket": body["ticket"]}))
    assert not replay.authenticated
    assert replay.close_code == CLOSE_UNAUTHORIZED


@pytest.mark.asyncio
async def test_ticket_for_foreign_project_is_404(client, tenants):
    r = await _ticket(client, tenants.owner, tenants.org_a, tenants.p3)
    assert r.status_code == 404
    assert r.json()["code"] == "PROJECT_NOT_FOUND"


@pytest.mark.asyncio
async def test_ticket_requires_session(client, services, tenants):
    secret, _ = await issue_key(services, tenants.owner, tenants.org_a)
    r = await client.post(
        "/api/v1/ws/ticket", json={"projectId": str(tenants.p1.id)}, headers={"x-api-key": secret}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_ticket_without_redis_is_503(client, services, tenants):
    services.ws_auth._redis = None
    r = await _ticket(client, tenants.member, tenants.org_a, tenants.p1)
    assert r.status_code == 503
    assert r.json()["code"] == "WS_TICKETS_UNAVAILABLE"


@pytest.mark.asyncio
async def test_unknown_ticket(services):
    result = await services.ws_auth.authenticate(handshake({"ticket": "nope"}))
    assert not result.authenticated
    assert result.close_code == CLOSE_UNAUTHORIZED


@pytest.mark.asyncio
async def test_ticket_bound_to_issuing_ip_when_checked(client, services, tenants):
    services.ws_auth._check_ip = True
    # The test client connects from 127.0.0.1
    ticket = (await _ticket(client, tenants.member, tenants.org_a, tenants.p1)).json()["ticket"]
    moved = await services.ws_auth.authenticate(handshake({"ticket": ticket}))
    assert not moved.authenticated
    assert moved.error == "IP mismatch"
    assert moved.close_code == CLOSE_UNAUTHORIZED

    ticket = (await _ticket(client, tenants.member, tenants.org_a, tenants.p1)).json()["ticket"]
    same = await services.ws_auth.authenticate(
        handshake({"ticket": ticket}, client_ip="127.0.0.1")
    )
    assert same.authenticated
    assert same.project_id == tenants.p1.id


@pytest.mark.asyncio
async def test_ticket_ip_ignored_by_default(client, services, tenants):
    ticket = (await _ticket(client, tenants.member, tenants.org_a, tenants.p1)).json()["ticket"]
    result = await services.ws_auth.authenticate(handshake({"ticket": ticket}))
    assert result.authenticated


# ═══════════════════════════════════════════════════════════
# Query-param API keys and sessions
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_api_key_query_param(services, tenants):
    secret, _ = await issue_key(services, tenants.owner, tenants.org_a, project_id=tenants.p1.id)
    result = await services.ws_auth.authenticate(handshake({"api_key": secret}))
    assert result.authenticated
    assert result.auth_type == "api_key"
    assert result.project_id == tenants.p1.id


@pytest.mark.asyncio
async def test_api_key_header(services, tenants):
    secret, _ = await issue_key(services, tenants.owner, tenants.org_a, project_id=tenants.p1.id)
    result = await services.ws_auth.authenticate(handshake(headers={"x-api-key": secret}))
    assert result.authenticated


@pytest.mark.asyncio
async def test_api_key_with_trailing_newline_is_malformed(services, tenants):
    secret, _ = await issue_key(services, tenants.owner, tenants.org_a, project_id=tenants.p1.id)
    result = await services.ws_auth.authenticate(handshake({"api_key": secret + "\n"}))
    assert not result.authenticated
    assert result.close_code == CLOSE_UNAUTHORIZED
    assert result.error.startswith("Invalid API key format")


@pytest.mark.asyncio
async def test_revoked_api_key_is_4001(services, tenants):
    secret, record = await issue_key(services, tenants.owner, tenants.org_a)
    await services.store.delete(record.id)
    result = await services.ws_auth.authenticate(handshake({"api_key": secret}))
    assert result.close_code == CLOSE_UNAUTHORIZED


@pytest.mark.asyncio
async def test_api_key_wrong_project_is_4003(services, tenants):
    secret, _ = await issue_key(services, tenants.owner, tenants.org_a, project_id=tenants.p1.id)
    result = await services.ws_auth.authenticate(
        handshake({"api_key": secret, "projectId": str(tenants.p2.id)})
    )
    assert result.close_code == CLOSE_FORBIDDEN


@pytest.mark.asyncio
async def test_session_without_project_is_4000(services, tenants):
    result = await services.ws_auth.authenticate(
        handshake(headers=session_headers(tenants.owner, tenants.org_a))
    )
    assert result.close_code == CLOSE_BAD_REQUEST


@pytest.mark.asyncio
async def test_session_with_project(services, tenants):
    result = await services.ws_auth.authenticate(
        handshake({"projectId": str(tenants.p2.id)}, headers=session_headers(tenants.owner, tenants.org_a))
    )
    assert result.authenticated
    assert result.auth_type == "session"
    assert result.project_id == tenants.p2.id


@pytest.mark.asyncio
async def test_session_foreign_project_is_4003(services, tenants):
    result = await services.ws_auth.authenticate(
        handshake({"projectId": str(tenants.p3.id)}, headers=session_headers(tenants.owner, tenants.org_a))
    )
    assert result.close_code == CLOSE_FORBIDDEN


@pytest.mark.asyncio
async def test_invalid_project_id_is_4000(services, tenants):
    result = await services.ws_auth.authenticate(handshake({"projectId": "not-a-uuid"}))
    assert result.close_code == CLOSE_BAD_REQUEST


@pytest.mark.asyncio
async def test_no_credentials_is_4001(services):
    result = await services.ws_auth.authenticate(handshake())
    assert not result.authenticated
    assert result.close_code == CLOSE_UNAUTHORIZED
