"""Session provider — turns a session token into a ``Session`` bundle.

Learn: Sessions are issued by the identity provider; this core only
consumes them. The provider protocol keeps that boundary explicit: the
resolver hands over the raw token and gets back ``Session`` or None. The
JWT implementation below verifies the signature, then reads the user's
*current* role in the token's organization from the membership table.
"""

import uuid
from typing import Optional, Protocol

import structlog

from tollgate.auth.context import Session
from tollgate.auth.jwt import TokenError, verify_session_token
from tollgate.config import Settings
from tollgate.services.tenant_directory import TenantDirectory

logger = structlog.get_logger()


class SessionProvider(Protocol):
    async def resolve(self, token: str) -> Optional[Session]:
        """Return the session behind a token, or None if it is not valid."""
        ...


def _uuid(value) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class JwtSessionProvider:
    def __init__(self, settings: Settings, directory: TenantDirectory):
        self._settings = settings
        self._directory = directory

    async def resolve(self, token: str) -> Optional[Session]:
        try:
            payload = verify_session_token(self._settings, token)
        except TokenError as e:
            logger.info("auth.session_invalid", reason=str(e))
            return None

        user_id = _uuid(payload.get("sub"))
        if user_id is None:
            logger.info("auth.session_invalid", reason="subject is not a user id")
            return None

        organization_id = _uuid(payload.get("org_id"))
        role = None
        if organization_id is not None:
            role = await self._directory.membership_role(user_id, organization_id)
            if role is None:
                # Removed from the organization since the token was issued.
                logger.info(
                    "auth.session_org_revoked",
                    user_id=str(user_id),
                    organization_id=str(organization_id),
                )
                organization_id = None

        return Session(
            user_id=user_id,
            organization_id=organization_id,
            role=role,
            two_factor_enabled=bool(payload.get("tfa", False)),
        )
