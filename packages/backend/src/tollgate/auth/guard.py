"""Declarative authorization checks.

Learn: An endpoint states *what* it needs as a ``GuardSpec`` and
``evaluate_guard`` decides. Keeping every rule in one function means
the order of checks (and therefore which error a caller sees first) is
the same everywhere:

    anonymous → identity type → organization → project → role → 2FA → permission

Roles apply to sessions (dashboard users); permissions apply to API
keys. Permission matching is OR: holding any listed permission passes.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog

from tollgate.auth import codec
from tollgate.auth.context import ApiKeyContext, AuthContext, SessionContext
from tollgate.auth.errors import (
    AdminNotConfigured,
    IdentityNotAllowed,
    InsufficientPermission,
    InsufficientRole,
    InvalidAdminKey,
    MissingCredential,
    MissingScope,
    ResourceNotFound,
    ScopeMismatch,
    TwoFactorRequired,
)

logger = structlog.get_logger()

PRIVILEGED_ROLES = frozenset({"owner", "admin"})
ALL_IDENTITIES = frozenset({"api_key", "session"})


@dataclass(frozen=True)
class GuardSpec:
    identity_types: frozenset[str] = ALL_IDENTITIES
    roles: frozenset[str] = frozenset()
    permissions: frozenset[str] = frozenset()
    require_organization: bool = False
    require_project: bool = False
    require_2fa_for_privileged: bool = False

    def __post_init__(self):
        # Accept any iterable at the call site.
        for name in ("identity_types", "roles", "permissions"):
            value = getattr(self, name)
            if not isinstance(value, frozenset):
                object.__setattr__(self, name, frozenset(value))


OPEN = GuardSpec(identity_types={"api_key", "session", "none"})


def evaluate_guard(ctx: AuthContext, spec: GuardSpec, enforce_2fa: bool = True) -> None:
    """Raise the first AuthError the context fails, or return None."""
    if ctx.type == "none":
        if "none" in spec.identity_types:
            return
        raise MissingCredential()

    if ctx.type not in spec.identity_types:
        raise IdentityNotAllowed()

    if spec.require_organization and ctx.organization_id is None:
        raise MissingScope()

    if spec.require_project and ctx.project_id is None:
        raise MissingScope(
            "Project context required. Pass projectId or use a project-scoped API key."
        )

    if isinstance(ctx, SessionContext):
        if spec.roles and ctx.role not in spec.roles:
            logger.info(
                "guard.insufficient_role",
                user_id=str(ctx.user_id),
                role=ctx.role,
                required=sorted(spec.roles),
            )
            raise InsufficientRole(spec.roles)
        if (
            enforce_2fa
            and spec.require_2fa_for_privileged
            and ctx.role in PRIVILEGED_ROLES
            and not ctx.two_factor_enabled
        ):
            raise TwoFactorRequired()

    if isinstance(ctx, ApiKeyContext) and spec.permissions:
        if not spec.permissions.intersection(ctx.credential.permissions):
            logger.info(
                "guard.insufficient_permission",
                api_key_id=str(ctx.credential.id),
                required=sorted(spec.permissions),
            )
            raise InsufficientPermission(spec.permissions)


def check_resource_scope(
    ctx: AuthContext,
    organization_id: uuid.UUID,
    project_id: Optional[uuid.UUID] = None,
) -> None:
    """Check that a loaded resource lies inside the caller's scope.

    API keys get 403 SCOPE_MISMATCH (the key holder knows what the key is
    for). Sessions get 404 so other tenants' ids look nonexistent.
    """
    if isinstance(ctx, ApiKeyContext):
        if ctx.organization_id != organization_id:
            raise ScopeMismatch()
        if ctx.project_id is not None and project_id is not None and ctx.project_id != project_id:
            raise ScopeMismatch()
        return
    if isinstance(ctx, SessionContext):
        if ctx.organization_id != organization_id:
            raise ResourceNotFound()
        if ctx.project_id is not None and project_id is not None and ctx.project_id != project_id:
            raise ResourceNotFound()
        return
    raise MissingCredential()


def has_any_role(ctx: AuthContext, roles: Iterable[str]) -> bool:
    return isinstance(ctx, SessionContext) and ctx.role in set(roles)


def verify_admin_key(authorization: Optional[str], admin_key: str) -> None:
    """Legacy admin path: ``Authorization: Bearer <admin secret>``."""
    if not admin_key:
        raise AdminNotConfigured()
    presented = ""
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            presented = value.strip()
    if not presented or not codec.constant_time_equals(presented, admin_key):
        logger.warning("admin.invalid_key")
        raise InvalidAdminKey()
