"""Traces API — the scoped tenant-resource read path.

Learn: Trace storage lives in another service; these routes exist to put
the authorization rules for tenant-owned resources in one visible place:
- GET /traces?projectId=…  → needs a project scope (the key's own, or
                              one the session's organization owns)
- GET /traces/{id}         → loads the trace, then checks it lies
                              inside the caller's organization/project

Both accept API keys (``traces:read``) and dashboard sessions.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tollgate.auth.context import AuthContext
from tollgate.auth.dependencies import Access, get_services
from tollgate.auth.errors import ResourceNotFound
from tollgate.auth.guard import GuardSpec, check_resource_scope
from tollgate.auth.resolver import ResolveMode
from tollgate.services.container import Services

router = APIRouter(prefix="/traces")

_read_trace = Access(
    ResolveMode.DUAL,
    GuardSpec(permissions={"traces:read"}, require_organization=True),
)
_list_traces = Access(
    ResolveMode.DUAL,
    GuardSpec(permissions={"traces:read"}, require_organization=True, require_project=True),
)


class TraceRead(BaseModel):
    id: uuid.UUID
    name: Optional[str]
    project_id: uuid.UUID
    organization_id: uuid.UUID
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


@router.get("", response_model=list[TraceRead])
async def list_traces(
    limit: int = 50,
    ctx: AuthContext = Depends(_list_traces),
    services: Services = Depends(get_services),
):
    return await services.directory.list_traces(ctx.project_id, limit=min(limit, 200))


@router.get("/{trace_id}", response_model=TraceRead)
async def get_trace(
    trace_id: uuid.UUID,
    ctx: AuthContext = Depends(_read_trace),
    services: Services = Depends(get_services),
):
    trace = await services.directory.get_trace(trace_id)
    if trace is None:
        raise ResourceNotFound("Trace not found")
    check_resource_scope(ctx, trace.organization_id, trace.project_id)
    return trace
