"""API key management — dashboard routes.

Learn: Routes (session auth, active organization required):
- GET    /api-keys       → owners/admins see every key in the org,
                           members see their own
- POST   /api-keys       → issue a key; the secret is returned ONCE
- GET    /api-keys/{id}
- PATCH  /api-keys/{id}  → name, permissions, rate_limit, allowed_ips
- DELETE /api-keys/{id}

PATCH and DELETE are allowed for the key's owner or an owner/admin of
the organization. Both return only after the credential cache has
forgotten the old row, so the very next request with that key sees the
change. If the cache cannot be reached the request fails with 503 even
though the database write went through; retrying is safe.
"""

import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, Request

from tollgate.auth import codec
from tollgate.auth.context import CredentialRecord, SessionContext
from tollgate.auth.dependencies import Access, get_services
from tollgate.auth.errors import ProjectNotFound, ResourceNotFound
from tollgate.auth.guard import PRIVILEGED_ROLES, GuardSpec, has_any_role
from tollgate.auth.resolver import ResolveMode
from tollgate.db.models import utcnow
from tollgate.events.types import (
    API_KEY_CREATED,
    API_KEY_DELETED,
    API_KEY_UPDATED,
    RESOURCE_API_KEY,
)
from tollgate.schemas.api_key import ApiKeyCreate, ApiKeyCreated, ApiKeyRead, ApiKeyUpdate
from tollgate.services.container import Services
from tollgate.services.credential_store import CredentialNotFound, CredentialSpec

router = APIRouter(prefix="/api-keys")

_manage = Access(
    ResolveMode.SESSION,
    GuardSpec(
        identity_types={"session"},
        require_organization=True,
        require_2fa_for_privileged=True,
    ),
    rate_limited=False,
)


async def _load(
    api_key_id: uuid.UUID, ctx: SessionContext, services: Services
) -> CredentialRecord:
    """Fetch a key this session may manage: its own, or any if owner/admin.

    Everything else is 404, so members cannot probe for colleagues' keys.
    """
    record = await services.store.get(api_key_id)
    if record is None or record.organization_id != ctx.organization_id:
        raise ResourceNotFound("API key not found")
    if record.user_id != ctx.user_id and not has_any_role(ctx, PRIVILEGED_ROLES):
        raise ResourceNotFound("API key not found")
    return record


@router.get("", response_model=list[ApiKeyRead])
async def list_api_keys(
    ctx: SessionContext = Depends(_manage),
    services: Services = Depends(get_services),
):
    owner_filter = None if has_any_role(ctx, PRIVILEGED_ROLES) else ctx.user_id
    return await services.store.list_for_organization(ctx.organization_id, owner_filter)


@router.post("", response_model=ApiKeyCreated, status_code=201)
async def create_api_key(
    body: ApiKeyCreate,
    request: Request,
    ctx: SessionContext = Depends(_manage),
    services: Services = Depends(get_services),
):
    """Create a new API key. The full key is only returned ONCE."""
    if body.project_id is not None and not await services.directory.project_in_organization(
        body.project_id, ctx.organization_id
    ):
        raise ProjectNotFound()

    secret = codec.generate(body.kind)
    expires_at = (
        utcnow() + timedelta(days=body.expires_in_days) if body.expires_in_days else None
    )
    record = await services.store.create(
        CredentialSpec(
            name=body.name,
            key_hash=secret.hash,
            key_prefix=secret.prefix,
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            project_id=body.project_id,
            permissions=body.permissions,
            rate_limit=body.rate_limit or services.settings.default_rate_limit,
            allowed_ips=body.allowed_ips,
            expires_at=expires_at,
        )
    )
    services.audit.emit(
        API_KEY_CREATED,
        user_id=ctx.user_id,
        organization_id=ctx.organization_id,
        api_key_id=record.id,
        resource_type=RESOURCE_API_KEY,
        resource_id=str(record.id),
        ip=services.resolver.client_ip(request),
        metadata={"name": record.name, "key_prefix": record.key_prefix},
    )
    return ApiKeyCreated(
        **ApiKeyRead.model_validate(record).model_dump(), key=secret.secret
    )


@router.get("/{api_key_id}", response_model=ApiKeyRead)
async def get_api_key(
    api_key_id: uuid.UUID,
    ctx: SessionContext = Depends(_manage),
    services: Services = Depends(get_services),
):
    return await _load(api_key_id, ctx, services)


@router.patch("/{api_key_id}", response_model=ApiKeyRead)
async def update_api_key(
    api_key_id: uuid.UUID,
    body: ApiKeyUpdate,
    request: Request,
    ctx: SessionContext = Depends(_manage),
    services: Services = Depends(get_services),
):
    record = await _load(api_key_id, ctx, services)

    patch = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if not patch:
        return record

    try:
        updated = await services.store.update(api_key_id, patch)
    except CredentialNotFound:
        raise ResourceNotFound("API key not found")

    services.audit.emit(
        API_KEY_UPDATED,
        user_id=ctx.user_id,
        organization_id=ctx.organization_id,
        api_key_id=updated.id,
        resource_type=RESOURCE_API_KEY,
        resource_id=str(updated.id),
        ip=services.resolver.client_ip(request),
        metadata={"fields": sorted(patch)},
    )
    return updated


@router.delete("/{api_key_id}")
async def delete_api_key(
    api_key_id: uuid.UUID,
    request: Request,
    ctx: SessionContext = Depends(_manage),
    services: Services = Depends(get_services),
):
    """Revoke a key. It stops working before this response is sent."""
    record = await _load(api_key_id, ctx, services)

    try:
        await services.store.delete(api_key_id)
    except CredentialNotFound:
        raise ResourceNotFound("API key not found")

    services.audit.emit(
        API_KEY_DELETED,
        user_id=ctx.user_id,
        organization_id=ctx.organization_id,
        api_key_id=record.id,
        resource_type=RESOURCE_API_KEY,
        resource_id=str(record.id),
        ip=services.resolver.client_ip(request),
        metadata={"name": record.name, "key_prefix": record.key_prefix},
    )
    return {"deleted": True, "id": str(record.id)}
