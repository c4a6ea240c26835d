"""Session token creation and verification.

Learn: Sessions belong to the identity provider. What reaches this core is
a signed JWT (cookie or Bearer header) carrying the user id, the active
organization and whether the user has two-factor enabled. The role is
deliberately NOT in the token — it is read from the membership table on
every request so role changes apply immediately.

``create_session_token`` exists for the password-login adapter and tests;
the core itself only ever decodes.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from tollgate.config import Settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_session_token(
    settings: Settings,
    user_id: str,
    org_id: Optional[str] = None,
    two_factor_enabled: bool = False,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a signed session token."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "session",
        "tfa": two_factor_enabled,
        "exp": now + timedelta(
            minutes=expires_minutes or settings.session_expire_minutes
        ),
        "iat": now,
    }
    if org_id:
        payload["org_id"] = org_id
    return jwt.encode(
        payload, settings.session_secret, algorithm=settings.session_algorithm
    )


def verify_session_token(settings: Settings, token: str) -> dict:
    """Verify and decode a session token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token,
            settings.session_secret,
            algorithms=[settings.session_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Session has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid session token: {e}")

    if payload.get("type") != "session":
        raise TokenError("Not a session token")
    return payload
