"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers. A route declares
what it accepts and what it requires in one place:

    ctx: AuthContext = Depends(Access(ResolveMode.DUAL, GuardSpec(permissions={"traces:read"})))

``Access.__call__`` runs the whole pipeline for that request: resolve
the identity (with the optional ``projectId`` query parameter), evaluate
the guard, then count the request against the API key's rate limit and
attach the X-RateLimit-* headers. Handlers receive the finished,
immutable AuthContext and never look at headers themselves.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, Query, Request, Response

from tollgate.auth.context import ApiKeyContext, AuthContext
from tollgate.auth.guard import GuardSpec, evaluate_guard, verify_admin_key
from tollgate.auth.resolver import ResolveMode
from tollgate.services.container import Services


def get_services(request: Request) -> Services:
    """The container built in the lifespan (see main.py)."""
    return request.app.state.services


class Access:
    """Configurable auth dependency: resolve → guard → rate limit."""

    def __init__(
        self,
        mode: ResolveMode = ResolveMode.DUAL,
        guard: Optional[GuardSpec] = None,
        rate_limited: bool = True,
    ):
        self.mode = mode
        self.guard = guard or GuardSpec()
        self.rate_limited = rate_limited

    async def __call__(
        self,
        request: Request,
        response: Response,
        project_id: Optional[uuid.UUID] = Query(None, alias="projectId"),
        services: Services = Depends(get_services),
    ) -> AuthContext:
        ctx = await services.resolver.resolve(request, self.mode, project_id=project_id)
        evaluate_guard(
            ctx,
            self.guard,
            enforce_2fa=services.settings.require_2fa_for_privileged_roles,
        )
        if self.rate_limited and isinstance(ctx, ApiKeyContext):
            decision = await services.rate_limiter.enforce(
                ctx.credential.id, ctx.credential.rate_limit
            )
            if decision is not None:
                response.headers.update(decision.headers())
        return ctx


async def require_admin(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> None:
    """Legacy admin path guarded by the shared admin secret."""
    verify_admin_key(authorization, services.settings.admin_key)


def request_ip(request: Request, services: Services = Depends(get_services)) -> Optional[str]:
    return services.resolver.client_ip(request)
