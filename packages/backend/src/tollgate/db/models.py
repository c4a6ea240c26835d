"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys via the portable ``Uuid`` type (native on PostgreSQL,
  CHAR(32) on SQLite) so the same models run in production and in tests
- JSON columns for permission and IP lists (JSONB on PostgreSQL)
- Timestamps are timezone-aware; SQLite hands them back naive, so readers
  normalise through ``as_utc``
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB where available, plain JSON everywhere else.
JsonList = JSON().with_variant(JSONB(), "postgresql")

DEFAULT_PERMISSIONS = ["traces:read", "traces:write"]


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ══════════════════════════════════════════════════════════════
# Tenant directory: organizations, projects, users, memberships
# ══════════════════════════════════════════════════════════════


class Organization(Base):
    """Multi-tenant root. Every credential and resource is scoped to one."""

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class Project(Base):
    """A project inside an organization. API keys may be pinned to one."""

    __tablename__ = "projects"
    __table_args__ = (Index("idx_projects_org", "organization_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class User(Base):
    """A human user. Sessions are issued for users by the identity provider."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # nullable for OAuth-only accounts
    two_factor_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class Membership(Base):
    """Organization membership — links users to organizations with a role.

    Learn: The role is read on every session-authenticated request, so a
    promotion or demotion takes effect without re-issuing the session.
    Roles: owner, admin, member.
    """

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_memberships"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class Trace(Base):
    """Tenant-owned resource read through the scoped traces endpoint.

    Learn: Trace and span storage live in another service; this table only
    carries what authorization needs — which project (and therefore which
    organization) a trace belongs to.
    """

    __tablename__ = "traces"
    __table_args__ = (Index("idx_traces_project", "project_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


# ══════════════════════════════════════════════════════════════
# API keys (credentials)
# ══════════════════════════════════════════════════════════════


class ApiKey(Base):
    """API key for programmatic access (SDKs, CI, agents).

    Learn: The key itself is only shown once (on creation). We store the
    SHA-256 hash (unique, the lookup key for every request) and a short
    display prefix. The hash never changes after issuance, which is what
    lets cache invalidation target a single key on update and delete.
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        Index("idx_api_keys_org", "organization_id"),
        Index("idx_api_keys_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    key_prefix: Mapped[str] = mapped_column(
        String(16), nullable=False
    )  # e.g. "tg_live_3fa9"
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True
    )
    permissions: Mapped[list[str]] = mapped_column(
        JsonList, nullable=False, default=lambda: list(DEFAULT_PERMISSIONS)
    )
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    allowed_ips: Mapped[list[str]] = mapped_column(
        JsonList, nullable=False, default=list
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
