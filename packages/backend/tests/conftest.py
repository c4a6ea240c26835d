"""Test fixtures — a real service container over SQLite and fakeredis.

Learn: Testing pattern for the access-control core:

1. Each test gets its own SQLite database file (aiosqlite) with the
   schema created from the models, so stores, background tasks and
   concurrent requests behave like they do against PostgreSQL.
2. Redis is fakeredis on a private FakeServer, so counters, WATCH/MULTI
   and GETDEL are exercised for real and never leak between tests.
3. ``build_services`` wires the exact production container; the app
   gets it on ``app.state.services`` and the lifespan is not involved.
4. Audit events go to an in-memory list; tests ``drain()`` background
   tasks before asserting on it.

Tenants seeded for every test:

    org A: projects P1, P2 — owner (2FA on), admin (2FA off), member
    org B: project P3      — outsider (owner of B)
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import fakeredis
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tollgate.auth import codec
from tollgate.auth.jwt import create_session_token
from tollgate.auth.password import hash_password
from tollgate.config import Settings
from tollgate.db.engine import create_engine, create_session_factory
from tollgate.db.models import (
    Base,
    Membership,
    Organization,
    Project,
    Trace,
    User,
)
from tollgate.main import create_app
from tollgate.services.container import build_services
from tollgate.services.credential_store import CredentialSpec

TEST_SESSION_SECRET = "test-session-secret-with-enough-bytes-for-hs256"
TEST_ADMIN_KEY = "test-admin-secret-0123456789"
PASSWORD = "correct-horse-battery-staple"


# ─── Infrastructure ──────────────────────────────────────


@pytest_asyncio.fixture()
async def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tollgate.db'}",
        redis_url="redis://fake",
        session_secret=TEST_SESSION_SECRET,
        admin_key=TEST_ADMIN_KEY,
        environment="development",
        lookup_timeout_seconds=2.0,
        login_max_attempts=5,
        login_lockout_seconds=900,
        rate_limit_window_seconds=3600,
    )


@pytest_asyncio.fixture()
async def engine(settings):
    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture()
async def redis():
    client = fakeredis.aioredis.FakeRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture()
async def broken_redis():
    """A Redis whose every command fails with ConnectionError."""
    server = fakeredis.FakeServer()
    server.connected = False
    client = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    yield client


@pytest_asyncio.fixture()
async def audit_events():
    return []


@pytest_asyncio.fixture()
async def services(settings, session_factory, redis, audit_events):
    async def sink(event):
        audit_events.append(event)

    services = build_services(settings, session_factory, redis, audit_sink=sink)
    yield services
    await services.drain()


@pytest_asyncio.fixture()
async def app(settings, services):
    app = create_app(settings)
    app.state.services = services
    return app


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ─── Seeded tenants ──────────────────────────────────────


@dataclass
class Tenants:
    org_a: Organization
    org_b: Organization
    p1: Project
    p2: Project
    p3: Project
    owner: User
    admin: User
    member: User
    outsider: User
    trace_p1: Trace
    trace_p2: Trace
    trace_p3: Trace


@pytest_asyncio.fixture()
async def tenants(session_factory):
    password_hash = hash_password(PASSWORD, rounds=4)
    org_a = Organization(name="Acme", slug=f"acme-{uuid.uuid4().hex[:6]}")
    org_b = Organization(name="Globex", slug=f"globex-{uuid.uuid4().hex[:6]}")
    async with session_factory() as db:
        db.add_all([org_a, org_b])
        await db.flush()

        p1 = Project(organization_id=org_a.id, name="P1")
        p2 = Project(organization_id=org_a.id, name="P2")
        p3 = Project(organization_id=org_b.id, name="P3")

        def user(email: str, tfa: bool) -> User:
            return User(
                email=email,
                name=email.split("@")[0],
                password_hash=password_hash,
                two_factor_enabled=tfa,
            )

        owner = user("owner@acme.test", True)
        admin = user("admin@acme.test", False)
        member = user("member@acme.test", False)
        outsider = user("boss@globex.test", True)
        db.add_all([p1, p2, p3, owner, admin, member, outsider])
        await db.flush()

        db.add_all([
            Membership(organization_id=org_a.id, user_id=owner.id, role="owner"),
            Membership(organization_id=org_a.id, user_id=admin.id, role="admin"),
            Membership(organization_id=org_a.id, user_id=member.id, role="member"),
            Membership(organization_id=org_b.id, user_id=outsider.id, role="owner"),
        ])
        trace_p1 = Trace(project_id=p1.id, name="checkout")
        trace_p2 = Trace(project_id=p2.id, name="search")
        trace_p3 = Trace(project_id=p3.id, name="billing")
        db.add_all([trace_p1, trace_p2, trace_p3])
        await db.commit()

    return Tenants(
        org_a=org_a, org_b=org_b, p1=p1, p2=p2, p3=p3,
        owner=owner, admin=admin, member=member, outsider=outsider,
        trace_p1=trace_p1, trace_p2=trace_p2, trace_p3=trace_p3,
    )


# ─── Helpers ─────────────────────────────────────────────


def session_headers(
    user: User,
    org: Optional[Organization] = None,
    two_factor_enabled: Optional[bool] = None,
) -> dict[str, str]:
    """Authorization header carrying a session token for ``user``."""
    settings = Settings(session_secret=TEST_SESSION_SECRET)
    token = create_session_token(
        settings,
        user_id=str(user.id),
        org_id=str(org.id) if org else None,
        two_factor_enabled=(
            user.two_factor_enabled if two_factor_enabled is None else two_factor_enabled
        ),
    )
    return {"Authorization": f"Bearer {token}"}


async def issue_key(services, user: User, org: Optional[Organization] = None, **overrides):
    """Create a credential straight through the store. Returns (secret, record)."""
    generated = codec.generate(overrides.pop("kind", "live"))
    spec = CredentialSpec(
        name=overrides.pop("name", "test key"),
        key_hash=generated.hash,
        key_prefix=generated.prefix,
        user_id=user.id,
        organization_id=org.id if org else None,
        **overrides,
    )
    record = await services.store.create(spec)
    return generated.secret, record
