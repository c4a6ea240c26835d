"""Resolved identities.

Learn: ``AuthContext`` is what the resolver hands to guards and handlers.
It is built once per request and is immutable afterwards — handlers
receive it as a FastAPI dependency instead of reading ad hoc attributes
off the request object. Exactly one variant exists per request:

- ApiKeyContext   — an SDK/CI caller holding a credential
- SessionContext  — a dashboard user with an active organization
- AnonymousContext — nobody (only produced for optional-auth endpoints)
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, field_validator

from tollgate.db.models import as_utc


class CredentialRecord(BaseModel):
    """Read-only snapshot of an ApiKey row — what the cache stores.

    Never contains the raw secret.
    """

    id: uuid.UUID
    name: str
    key_hash: str
    key_prefix: str
    user_id: uuid.UUID
    organization_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None
    permissions: list[str] = []
    rate_limit: int
    allowed_ips: list[str] = []
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("expires_at", "last_used_at", "created_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now


@dataclass(frozen=True)
class Session:
    """An externally issued session, as the identity provider resolved it."""

    user_id: uuid.UUID
    organization_id: Optional[uuid.UUID] = None
    role: Optional[str] = None
    two_factor_enabled: bool = False


@dataclass(frozen=True)
class ApiKeyContext:
    credential: CredentialRecord
    organization_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None
    type: Literal["api_key"] = "api_key"

    @property
    def user_id(self) -> uuid.UUID:
        return self.credential.user_id


@dataclass(frozen=True)
class SessionContext:
    user_id: uuid.UUID
    organization_id: Optional[uuid.UUID] = None
    role: Optional[str] = None
    two_factor_enabled: bool = False
    project_id: Optional[uuid.UUID] = None
    type: Literal["session"] = "session"


@dataclass(frozen=True)
class AnonymousContext:
    type: Literal["none"] = "none"
    organization_id: None = None
    project_id: None = None
    user_id: None = None


AuthContext = Union[ApiKeyContext, SessionContext, AnonymousContext]

ANONYMOUS = AnonymousContext()
