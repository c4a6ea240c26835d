"""Auth API — password login and identity introspection.

Learn: Routes:
- POST /auth/login → email/password → session token (cookie + body)
- GET  /auth/me    → the resolved AuthContext, for either identity type

Login runs through LoginGate: the lockout check happens before the
password is even looked at, and every failure is counted. Unknown emails
and wrong passwords produce the same error after the same bcrypt work.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from tollgate.auth.context import ApiKeyContext, AuthContext, SessionContext
from tollgate.auth.dependencies import Access, get_services
from tollgate.auth.jwt import create_session_token
from tollgate.auth.password import verify_password_or_dummy
from tollgate.auth.resolver import ResolveMode
from tollgate.db.models import User
from tollgate.events.types import RESOURCE_USER, USER_LOGIN
from tollgate.services.container import Services

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: uuid.UUID
    organization_id: Optional[uuid.UUID]


class MeResponse(BaseModel):
    type: str
    user_id: Optional[uuid.UUID]
    organization_id: Optional[uuid.UUID]
    project_id: Optional[uuid.UUID]
    role: Optional[str] = None
    two_factor_enabled: Optional[bool] = None
    api_key_id: Optional[uuid.UUID] = None
    key_prefix: Optional[str] = None
    permissions: Optional[list[str]] = None


# ─── Endpoints ───────────────────────────────────────────


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    """Email/password login. Locked out after repeated failures."""
    settings = services.settings
    ip = services.resolver.client_ip(request)

    async def verify() -> Optional[User]:
        user = await services.directory.get_user_by_email(body.email)
        ok = await run_in_threadpool(
            verify_password_or_dummy,
            body.password,
            user.password_hash if user else None,
        )
        return user if ok else None

    user = await services.login_gate.attempt(body.email, verify, ip=ip)

    organization_id = await services.directory.default_organization(user.id)
    token = create_session_token(
        settings,
        user_id=str(user.id),
        org_id=str(organization_id) if organization_id else None,
        two_factor_enabled=user.two_factor_enabled,
    )
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_expire_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.environment != "development",
    )
    services.audit.emit(
        USER_LOGIN,
        user_id=user.id,
        organization_id=organization_id,
        resource_type=RESOURCE_USER,
        resource_id=str(user.id),
        ip=ip,
    )
    return LoginResponse(
        access_token=token, user_id=user.id, organization_id=organization_id
    )


@router.get("/me", response_model=MeResponse)
async def me(ctx: AuthContext = Depends(Access(ResolveMode.DUAL))):
    """Who the core thinks the caller is."""
    if isinstance(ctx, ApiKeyContext):
        return MeResponse(
            type=ctx.type,
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            project_id=ctx.project_id,
            api_key_id=ctx.credential.id,
            key_prefix=ctx.credential.key_prefix,
            permissions=ctx.credential.permissions,
        )
    if isinstance(ctx, SessionContext):
        return MeResponse(
            type=ctx.type,
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            project_id=ctx.project_id,
            role=ctx.role,
            two_factor_enabled=ctx.two_factor_enabled,
        )
    return MeResponse(
        type=ctx.type,
        user_id=ctx.user_id,
        organization_id=ctx.organization_id,
        project_id=ctx.project_id,
    )
