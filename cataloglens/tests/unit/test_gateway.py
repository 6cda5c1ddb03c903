from __future__ import annotations

import pytest

from cataloglens.core.errors import CatalogUnavailableError
from cataloglens.domain.refs import DatasetKey, TableReference
from cataloglens.providers.agents.fake import FakeDataAgentProvider
from cataloglens.providers.authority.fake import FakeIamAuthority
from cataloglens.providers.catalog.fake import FakeCatalogProvider
from cataloglens.services.gateway import (
    ELEVATED_PROJECT_ROLES,
    READER_OR_ABOVE_ROLES,
    bindings_grant,
    iam_member,
)
from cataloglens.services.keys import agent_id_for, derive_cache_key
from cataloglens.services.telemetry import external_call_summary
from cataloglens.tests.utils.stubs import SALES_SCHEMAS, make_gateway, make_settings, viewer_binding


def test_iam_member_prefixes_bare_emails() -> None:
    assert iam_member("ana@example.com") == "user:ana@example.com"
    assert iam_member("group:eng@example.com") == "group:eng@example.com"


def test_bindings_grant_matches_role_and_member() -> None:
    bindings = [viewer_binding("user:Ana@Example.com"), {"role": "roles/owner", "members": ["user:bo@example.com"]}]
    assert bindings_grant(bindings, "ana@example.com", READER_OR_ABOVE_ROLES)
    assert not bindings_grant(bindings, "ana@example.com", ELEVATED_PROJECT_ROLES)
    assert bindings_grant(bindings, "bo@example.com", ELEVATED_PROJECT_ROLES)
    assert bindings_grant(bindings, "bo@example.com", None)
    assert not bindings_grant(bindings, "cy@example.com", None)


def test_bindings_grant_public_members() -> None:
    assert bindings_grant([viewer_binding("allAuthenticatedUsers")], "anyone@example.com", READER_OR_ABOVE_ROLES)


@pytest.mark.asyncio
async def test_project_membership_fails_closed() -> None:
    authority = FakeIamAuthority(
        project_policies={"p1": [{"role": "roles/viewer", "members": ["user:ana@example.com"]}]},
        failing={"p2"},
    )
    gateway = make_gateway(authority=authority)
    assert await gateway.check_project_membership("ana@example.com", "p1", READER_OR_ABOVE_ROLES)
    assert not await gateway.check_project_membership("ana@example.com", "p2", READER_OR_ABOVE_ROLES)
    assert not await gateway.check_project_membership("ana@example.com", "p1", ELEVATED_PROJECT_ROLES)


@pytest.mark.asyncio
async def test_resource_memberships_isolate_failures() -> None:
    authority = FakeIamAuthority(
        dataset_policies={
            "p1.sales": [viewer_binding("user:ana@example.com")],
            "p1.hr": [viewer_binding("user:bo@example.com")],
        },
        failing={"p1.broken"},
    )
    gateway = make_gateway(authority=authority)
    sales, hr, broken = DatasetKey("p1", "sales"), DatasetKey("p1", "hr"), DatasetKey("p1", "broken")

    verdicts = await gateway.check_resource_memberships("ana@example.com", [sales, hr, broken, sales])

    assert verdicts == {sales: True, hr: False, broken: False}
    # Duplicates collapse to one lookup per dataset.
    assert authority.calls["dataset:p1.sales"] == 1
    summary = external_call_summary()
    assert summary["authority.dataset_iam"]["calls"] == 3
    assert summary["authority.dataset_iam"]["failures"] == 1


@pytest.mark.asyncio
async def test_fetch_schema_skips_failing_tables() -> None:
    catalog = FakeCatalogProvider(schemas=SALES_SCHEMAS, failing_tables={"p1.sales.customers"})
    gateway = make_gateway(catalog=catalog)

    tables = await gateway.fetch_schema(DatasetKey("p1", "sales"))

    assert [table.name for table in tables] == ["orders"]
    assert [column.name for column in tables[0].columns] == ["order_id", "customer_id"]


@pytest.mark.asyncio
async def test_fetch_schema_returns_empty_when_listing_fails() -> None:
    catalog = FakeCatalogProvider(schemas=SALES_SCHEMAS, failing_datasets={"p1.sales"})
    gateway = make_gateway(catalog=catalog)
    assert await gateway.fetch_schema(DatasetKey("p1", "sales")) == []
    assert catalog.calls["get_table_schema"] == 0


@pytest.mark.asyncio
async def test_create_or_fetch_agent_creates_then_recovers_conflict() -> None:
    refs = [TableReference("p1", "sales", "orders"), TableReference("p1", "sales", "customers")]
    agents = FakeDataAgentProvider()
    gateway = make_gateway(agents=agents)

    created = await gateway.create_or_fetch_agent(refs, "be brief")
    assert created is not None
    assert created.cache_key == derive_cache_key(refs)
    assert created.external_resource_name.endswith(f"/dataAgents/{agent_id_for(created.cache_key)}")

    # Same set in another order hits the remote conflict and falls back to get.
    again = await gateway.create_or_fetch_agent(list(reversed(refs)), "be brief")
    assert again == created
    assert agents.calls["create"] == 2
    assert agents.calls["get"] == 1


@pytest.mark.asyncio
async def test_create_or_fetch_agent_returns_none_on_failure() -> None:
    agents = FakeDataAgentProvider(fail_create=True)
    gateway = make_gateway(agents=agents)
    assert await gateway.create_or_fetch_agent([TableReference("p", "d", "t")], "") is None

    conflicted = FakeDataAgentProvider(existing={agent_id_for(derive_cache_key([TableReference("p", "d", "t")]))})
    conflicted.fail_get = True
    gateway = make_gateway(agents=conflicted)
    assert await gateway.create_or_fetch_agent([TableReference("p", "d", "t")], "") is None


@pytest.mark.asyncio
async def test_search_entries_raises_catalog_unavailable() -> None:
    class BrokenCatalog(FakeCatalogProvider):
        async def search_entries(self, query, *, page_size, page_token=None):
            raise ConnectionError("catalog down")

    gateway = make_gateway(catalog=BrokenCatalog())
    with pytest.raises(CatalogUnavailableError):
        await gateway.search_entries("orders", page_size=10)


@pytest.mark.asyncio
async def test_resource_memberships_survive_many_failing_datasets() -> None:
    broken = [DatasetKey("p1", f"broken_{index:02d}") for index in range(20)]
    authority = FakeIamAuthority(
        dataset_policies={"p1.zz_healthy": [viewer_binding("user:ana@example.com")]},
        failing={key.canonical for key in broken},
    )
    settings = make_settings(cb_failure_threshold=5, authority_max_concurrency=1)
    gateway = make_gateway(authority=authority, settings=settings)
    healthy = DatasetKey("p1", "zz_healthy")

    verdicts = await gateway.check_resource_memberships("ana@example.com", [*broken, healthy])

    assert verdicts[healthy] is True
    assert sum(verdicts.values()) == 1
    # A later request still reaches the healthy dataset.
    assert await gateway.check_resource_membership("ana@example.com", healthy)


@pytest.mark.asyncio
async def test_fetch_schema_failing_tables_do_not_block_siblings() -> None:
    tables = {f"broken_{index:02d}": [("id", "INT64")] for index in range(10)}
    tables["zz_orders"] = [("order_id", "INT64")]
    catalog = FakeCatalogProvider(
        schemas={"p1.wide": tables, "p1.sales": SALES_SCHEMAS["p1.sales"]},
        failing_tables={f"p1.wide.broken_{index:02d}" for index in range(10)},
    )
    settings = make_settings(cb_failure_threshold=2, schema_fetch_max_concurrency=1)
    gateway = make_gateway(catalog=catalog, settings=settings)

    wide = await gateway.fetch_schema(DatasetKey("p1", "wide"))
    sales = await gateway.fetch_schema(DatasetKey("p1", "sales"))

    assert [table.name for table in wide] == ["zz_orders"]
    assert sorted(table.name for table in sales) == ["customers", "orders"]
