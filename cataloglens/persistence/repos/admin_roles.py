from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cataloglens.domain.models import AdminRole


async def get_admin_role(session: AsyncSession, email: str) -> AdminRole | None:
    result = await session.execute(select(AdminRole).where(AdminRole.email == email.lower()))
    return result.scalar_one_or_none()


async def upsert_admin_role(
    session: AsyncSession,
    *,
    email: str,
    role: str,
    assigned_projects: list[str],
    created_by: str | None,
    now: datetime,
) -> AdminRole:
    # Reactivate soft-deleted rows instead of inserting duplicates.
    existing = await get_admin_role(session, email)
    if existing is None:
        row = AdminRole(
            email=email.lower(),
            role=role,
            assigned_projects_json=assigned_projects,
            is_active=True,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        return row
    existing.role = role
    existing.assigned_projects_json = assigned_projects
    existing.is_active = True
    existing.updated_at = now
    return existing


async def deactivate_admin_role(session: AsyncSession, email: str, *, now: datetime) -> AdminRole | None:
    existing = await get_admin_role(session, email)
    if existing is None:
        return None
    existing.is_active = False
    existing.updated_at = now
    return existing
