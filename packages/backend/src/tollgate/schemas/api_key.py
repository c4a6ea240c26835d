"""Pydantic schemas for API key management.

Learn: The create response is the only schema that carries the raw
secret, and it is returned exactly once. Every read schema exposes the
display prefix instead. IP allow-list entries are validated and
normalised here so the resolver only ever sees well-formed entries.
"""

import re
import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from tollgate.auth.ip import validate_entry
from tollgate.db.models import DEFAULT_PERMISSIONS

PERMISSION_PATTERN = r"^[a-z_]+:[a-z_*]+$"


def _normalise_ips(value: Optional[list[str]]) -> Optional[list[str]]:
    if value is None:
        return None
    return [validate_entry(entry) for entry in value]


# ─── Create (dashboard → platform) ──────────────────────


class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: Literal["live", "test"] = "live"
    project_id: Optional[uuid.UUID] = Field(
        None, description="Pin the key to one project (None = organization-wide)"
    )
    permissions: list[str] = Field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    rate_limit: Optional[int] = Field(None, ge=1, le=1_000_000)
    allowed_ips: list[str] = Field(default_factory=list)
    expires_in_days: Optional[int] = Field(None, ge=1, le=3650)

    @field_validator("permissions")
    @classmethod
    def _permissions(cls, value: list[str]) -> list[str]:
        return _validate_permissions(value)

    @field_validator("allowed_ips")
    @classmethod
    def _ips(cls, value: list[str]) -> list[str]:
        return _normalise_ips(value)


# ─── Update (partial) ───────────────────────────────────


class ApiKeyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    permissions: Optional[list[str]] = None
    rate_limit: Optional[int] = Field(None, ge=1, le=1_000_000)
    allowed_ips: Optional[list[str]] = None

    @field_validator("permissions")
    @classmethod
    def _permissions(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return None if value is None else _validate_permissions(value)

    @field_validator("allowed_ips")
    @classmethod
    def _ips(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _normalise_ips(value)


def _validate_permissions(value: list[str]) -> list[str]:
    if not value:
        raise ValueError("At least one permission is required")
    for permission in value:
        if not re.fullmatch(PERMISSION_PATTERN, permission):
            raise ValueError(f"Invalid permission: {permission!r}")
    return sorted(set(value))


# ─── Read (platform → client) ───────────────────────────


class ApiKeyRead(BaseModel):
    id: uuid.UUID
    name: str
    key_prefix: str
    user_id: uuid.UUID
    organization_id: Optional[uuid.UUID]
    project_id: Optional[uuid.UUID]
    permissions: list[str]
    rate_limit: int
    allowed_ips: list[str]
    expires_at: Optional[datetime]
    last_used_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class ApiKeyCreated(ApiKeyRead):
    """Response for API key creation — the key is only shown ONCE."""

    key: str
