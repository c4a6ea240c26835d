"""Admin API — legacy operator path guarded by a shared secret.

Learn: Routes (``Authorization: Bearer <TOLLGATE_ADMIN_KEY>``):
- DELETE /admin/api-keys/{id}       → revoke any key (incident response)
- DELETE /admin/login-lockouts?email → lift a login lockout

The secret is compared in constant time. With no secret configured the
whole router answers 503 rather than accepting anything.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Request

from tollgate.auth.dependencies import get_services, require_admin
from tollgate.auth.errors import ResourceNotFound
from tollgate.events.types import (
    API_KEY_DELETED,
    RESOURCE_API_KEY,
    RESOURCE_USER,
    USER_LOCKOUT_CLEARED,
)
from tollgate.services.container import Services
from tollgate.services.credential_store import CredentialNotFound
from tollgate.services.login_tracker import mask_identifier

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.delete("/api-keys/{api_key_id}")
async def admin_delete_api_key(
    api_key_id: uuid.UUID,
    request: Request,
    services: Services = Depends(get_services),
):
    try:
        record = await services.store.delete(api_key_id)
    except CredentialNotFound:
        raise ResourceNotFound("API key not found")

    services.audit.emit(
        API_KEY_DELETED,
        user_id=record.user_id,
        organization_id=record.organization_id,
        api_key_id=record.id,
        resource_type=RESOURCE_API_KEY,
        resource_id=str(record.id),
        ip=services.resolver.client_ip(request),
        metadata={"via": "admin", "key_prefix": record.key_prefix},
    )
    return {"deleted": True, "id": str(record.id)}


@router.delete("/login-lockouts")
async def admin_clear_lockout(
    request: Request,
    email: str = Query(..., min_length=3),
    services: Services = Depends(get_services),
):
    await services.login_tracker.clear(email)
    services.audit.emit(
        USER_LOCKOUT_CLEARED,
        resource_type=RESOURCE_USER,
        ip=services.resolver.client_ip(request),
        metadata={"identifier": mask_identifier(email), "via": "admin"},
    )
    return {"cleared": True, "identifier": mask_identifier(email)}
