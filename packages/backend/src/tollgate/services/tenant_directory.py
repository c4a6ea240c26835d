"""Tenant directory — keyed reads of organizations, projects and members.

Learn: The resolver needs exactly two facts from the tenant tables on the
hot path: "does project P belong to organization O?" and "what role does
user U hold in O?". Both are single indexed reads and both run under the
lookup timeout, because an authorization decision waits on them.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tollgate.db.models import Membership, Project, Trace, User, as_utc
from tollgate.services.lookup import bounded


@dataclass(frozen=True)
class TraceRef:
    """A trace plus the tenant it belongs to."""

    id: uuid.UUID
    name: Optional[str]
    project_id: uuid.UUID
    organization_id: uuid.UUID
    created_at: Optional[datetime] = None


class TenantDirectory:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 2.0,
    ):
        self._session_factory = session_factory
        self._timeout = timeout

    # ─── Hot path (bounded) ──────────────────────────────

    async def project_organization(self, project_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Owning organization of a project, or None if it does not exist."""

        async def _query() -> Optional[uuid.UUID]:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Project.organization_id).where(Project.id == project_id)
                )
                return result.scalar_one_or_none()

        return await bounded(_query(), self._timeout, "directory.project_organization")

    async def project_in_organization(
        self, project_id: uuid.UUID, organization_id: uuid.UUID
    ) -> bool:
        return await self.project_organization(project_id) == organization_id

    async def membership_role(
        self, user_id: uuid.UUID, organization_id: uuid.UUID
    ) -> Optional[str]:
        """Current role of a user in an organization, None if not a member."""

        async def _query() -> Optional[str]:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Membership.role).where(
                        Membership.user_id == user_id,
                        Membership.organization_id == organization_id,
                    )
                )
                return result.scalar_one_or_none()

        return await bounded(_query(), self._timeout, "directory.membership_role")

    # ─── Everything else ─────────────────────────────────

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(User).where(User.email == email.strip().lower())
            )
            return result.scalars().first()

    async def default_organization(self, user_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Oldest membership, used as the active organization after login."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Membership.organization_id)
                .where(Membership.user_id == user_id)
                .order_by(Membership.created_at)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_trace(self, trace_id: uuid.UUID) -> Optional[TraceRef]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Trace, Project.organization_id)
                .join(Project, Project.id == Trace.project_id)
                .where(Trace.id == trace_id)
            )
            row = result.first()
            if row is None:
                return None
            trace, organization_id = row
            return TraceRef(
                id=trace.id,
                name=trace.name,
                project_id=trace.project_id,
                organization_id=organization_id,
                created_at=as_utc(trace.created_at),
            )

    async def list_traces(self, project_id: uuid.UUID, limit: int = 50) -> list[TraceRef]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Trace, Project.organization_id)
                .join(Project, Project.id == Trace.project_id)
                .where(Trace.project_id == project_id)
                .order_by(Trace.created_at.desc())
                .limit(limit)
            )
            return [
                TraceRef(
                    id=trace.id,
                    name=trace.name,
                    project_id=trace.project_id,
                    organization_id=organization_id,
                    created_at=as_utc(trace.created_at),
                )
                for trace, organization_id in result.all()
            ]
