from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Literal, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cataloglens.core.config import Settings, get_settings
from cataloglens.core.errors import AdminRoleStoreError
from cataloglens.domain.models import AdminRole
from cataloglens.persistence.repos import admin_roles as admin_roles_repo
from cataloglens.services.gateway import ELEVATED_PROJECT_ROLES, AuthorityGateway


logger = logging.getLogger(__name__)

ROLE_SUPER_ADMIN = "super-admin"
ROLE_PROJECT_ADMIN = "project-admin"
ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_PROJECT_ADMIN)

RoleSource = Literal["store", "env", "iam"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AdminRoleRecord:
    email: str
    role: str
    assigned_projects: tuple[str, ...] = ()
    is_active: bool = True
    # Where the resolver found the role.
    source: RoleSource = "store"
    created_by: str | None = None
    updated_at: datetime | None = None

    def covers_project(self, project_id: str) -> bool:
        return self.role == ROLE_SUPER_ADMIN or project_id in self.assigned_projects


class AdminRoleStore(Protocol):
    async def get(self, email: str) -> AdminRoleRecord | None:
        ...

    async def set(
        self, email: str, role: str, assigned_projects: list[str], created_by: str | None
    ) -> AdminRoleRecord:
        ...

    async def deactivate(self, email: str) -> bool:
        ...


def _record_from_row(row: AdminRole) -> AdminRoleRecord:
    return AdminRoleRecord(
        email=row.email,
        role=row.role,
        assigned_projects=tuple(row.assigned_projects_json or []),
        is_active=row.is_active,
        created_by=row.created_by,
        updated_at=row.updated_at,
    )


def _normalize_projects(role: str, assigned_projects: list[str]) -> list[str]:
    # Super admins cover every project; an explicit list would be misleading.
    if role == ROLE_SUPER_ADMIN:
        return []
    return sorted(set(assigned_projects))


class SqlAdminRoleStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, email: str) -> AdminRoleRecord | None:
        try:
            async with self._session_factory() as session:
                row = await admin_roles_repo.get_admin_role(session, email)
        except SQLAlchemyError as exc:
            raise AdminRoleStoreError(f"failed to read admin role for {email}") from exc
        return _record_from_row(row) if row is not None else None

    async def set(
        self, email: str, role: str, assigned_projects: list[str], created_by: str | None
    ) -> AdminRoleRecord:
        try:
            async with self._session_factory() as session:
                row = await admin_roles_repo.upsert_admin_role(
                    session,
                    email=email,
                    role=role,
                    assigned_projects=_normalize_projects(role, assigned_projects),
                    created_by=created_by,
                    now=_utc_now(),
                )
                await session.commit()
                return _record_from_row(row)
        except SQLAlchemyError as exc:
            raise AdminRoleStoreError(f"failed to write admin role for {email}") from exc

    async def deactivate(self, email: str) -> bool:
        try:
            async with self._session_factory() as session:
                row = await admin_roles_repo.deactivate_admin_role(session, email, now=_utc_now())
                await session.commit()
        except SQLAlchemyError as exc:
            raise AdminRoleStoreError(f"failed to deactivate admin role for {email}") from exc
        return row is not None


@dataclass
class InMemoryAdminRoleStore:
    records: dict[str, AdminRoleRecord] = field(default_factory=dict)

    async def get(self, email: str) -> AdminRoleRecord | None:
        return self.records.get(email.lower())

    async def set(
        self, email: str, role: str, assigned_projects: list[str], created_by: str | None
    ) -> AdminRoleRecord:
        existing = self.records.get(email.lower())
        record = AdminRoleRecord(
            email=email.lower(),
            role=role,
            assigned_projects=tuple(_normalize_projects(role, assigned_projects)),
            created_by=existing.created_by if existing else created_by,
            updated_at=_utc_now(),
        )
        self.records[record.email] = record
        return record

    async def deactivate(self, email: str) -> bool:
        existing = self.records.get(email.lower())
        if existing is None:
            return False
        self.records[existing.email] = replace(existing, is_active=False, updated_at=_utc_now())
        return True


class AdminRoleResolver:
    """Resolve elevated status: role store, then SUPER_ADMIN_EMAIL, then IAM owner/editor."""

    def __init__(
        self,
        store: AdminRoleStore,
        gateway: AuthorityGateway,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._settings = settings or get_settings()

    async def resolve(self, email: str | None) -> AdminRoleRecord | None:
        if not email:
            return None
        try:
            stored = await self._store.get(email)
        except AdminRoleStoreError as exc:
            # Keep going; the env and IAM sources can still answer.
            logger.warning("admin_role_store_unavailable email=%s", email, exc_info=exc)
            stored = None
        if stored is not None and stored.is_active:
            return stored

        super_admin = self._settings.super_admin_email
        if super_admin and email.lower() == super_admin.lower():
            logger.info("admin_role_resolved email=%s source=env", email)
            return AdminRoleRecord(email=email.lower(), role=ROLE_SUPER_ADMIN, source="env")

        project_id = self._settings.google_cloud_project_id
        if project_id and await self._gateway.check_project_membership(
            email, project_id, ELEVATED_PROJECT_ROLES
        ):
            logger.info("admin_role_resolved email=%s source=iam project=%s", email, project_id)
            return AdminRoleRecord(
                email=email.lower(),
                role=ROLE_PROJECT_ADMIN,
                assigned_projects=(project_id,),
                source="iam",
            )
        return None

    async def is_admin(self, email: str | None) -> bool:
        return await self.resolve(email) is not None

    async def is_super_admin(self, email: str | None) -> bool:
        record = await self.resolve(email)
        return record is not None and record.role == ROLE_SUPER_ADMIN

    async def is_project_admin(self, email: str | None, project_id: str) -> bool:
        record = await self.resolve(email)
        return record is not None and record.covers_project(project_id)
