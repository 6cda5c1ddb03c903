from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from cataloglens.core.errors import AdminRoleStoreError
from cataloglens.domain.models import Base
from cataloglens.providers.authority.fake import FakeIamAuthority
from cataloglens.services.admin_roles import (
    ROLE_PROJECT_ADMIN,
    ROLE_SUPER_ADMIN,
    AdminRoleResolver,
    InMemoryAdminRoleStore,
    SqlAdminRoleStore,
)
from cataloglens.tests.utils.stubs import HOME_PROJECT, make_gateway, make_settings


def _resolver(store, authority: FakeIamAuthority | None = None, **settings_overrides) -> AdminRoleResolver:
    settings = make_settings(**settings_overrides)
    return AdminRoleResolver(store, make_gateway(authority=authority, settings=settings), settings=settings)


@pytest.mark.asyncio
async def test_store_record_wins_and_scopes_projects() -> None:
    store = InMemoryAdminRoleStore()
    await store.set("Pat@Example.com", ROLE_PROJECT_ADMIN, ["p2", "p1", "p1"], "root@example.com")
    resolver = _resolver(store)

    record = await resolver.resolve("pat@example.com")

    assert record is not None and record.source == "store"
    assert record.assigned_projects == ("p1", "p2")
    assert await resolver.is_project_admin("pat@example.com", "p1")
    assert not await resolver.is_project_admin("pat@example.com", "p3")
    assert not await resolver.is_super_admin("pat@example.com")


@pytest.mark.asyncio
async def test_deactivated_record_falls_through() -> None:
    store = InMemoryAdminRoleStore()
    await store.set("pat@example.com", ROLE_SUPER_ADMIN, [], None)
    assert await store.deactivate("pat@example.com") is True
    assert await store.deactivate("nobody@example.com") is False

    assert not await _resolver(store).is_admin("pat@example.com")


@pytest.mark.asyncio
async def test_env_super_admin() -> None:
    resolver = _resolver(InMemoryAdminRoleStore(), super_admin_email="Root@Example.com")
    record = await resolver.resolve("root@example.com")
    assert record is not None and record.source == "env" and record.role == ROLE_SUPER_ADMIN
    assert await resolver.is_project_admin("root@example.com", "any-project")


@pytest.mark.asyncio
async def test_iam_owner_is_project_admin_of_home_project() -> None:
    authority = FakeIamAuthority(
        project_policies={HOME_PROJECT: [{"role": "roles/editor", "members": ["user:ed@example.com"]}]}
    )
    resolver = _resolver(InMemoryAdminRoleStore(), authority)

    record = await resolver.resolve("ed@example.com")

    assert record is not None and record.source == "iam"
    assert await resolver.is_project_admin("ed@example.com", HOME_PROJECT)
    assert not await resolver.is_super_admin("ed@example.com")
    assert await resolver.resolve(None) is None


@pytest.mark.asyncio
async def test_store_outage_falls_back_to_env() -> None:
    class BrokenStore(InMemoryAdminRoleStore):
        async def get(self, email: str):
            raise AdminRoleStoreError("down")

    resolver = _resolver(BrokenStore(), super_admin_email="root@example.com")
    assert await resolver.is_super_admin("root@example.com")
    assert not await resolver.is_admin("pat@example.com")


@pytest.mark.asyncio
async def test_sql_admin_role_store(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'roles.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    store = SqlAdminRoleStore(async_sessionmaker(engine, expire_on_commit=False))
    try:
        created = await store.set("Pat@Example.com", ROLE_PROJECT_ADMIN, ["p1"], "root@example.com")
        assert created.email == "pat@example.com"

        fetched = await store.get("PAT@example.com")
        assert fetched is not None and fetched.assigned_projects == ("p1",)

        assert await store.deactivate("pat@example.com") is True
        fetched = await store.get("pat@example.com")
        assert fetched is not None and fetched.is_active is False

        reactivated = await store.set("pat@example.com", ROLE_SUPER_ADMIN, ["p1"], "other@example.com")
        assert reactivated.is_active is True
        assert reactivated.assigned_projects == ()
        assert reactivated.created_by == "root@example.com"
    finally:
        await engine.dispose()
