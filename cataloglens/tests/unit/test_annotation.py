from __future__ import annotations

import pytest

from cataloglens.providers.authority.fake import FakeIamAuthority
from cataloglens.providers.catalog.fake import FakeCatalogProvider
from cataloglens.services.admin_roles import AdminRoleResolver, InMemoryAdminRoleStore, ROLE_SUPER_ADMIN
from cataloglens.services.annotation import ACCESS_FIELD, AccessAnnotator
from cataloglens.tests.utils.stubs import HOME_PROJECT, catalog_item, make_gateway, make_settings, viewer_binding


ANA = "ana@example.com"

RESULTS = [
    catalog_item("bigquery:p1.sales.orders"),
    catalog_item("bigquery:p1.sales.customers"),
    catalog_item("bigquery:p1.hr.people"),
    catalog_item("bigquery:p2.broken.things"),
    {"displayName": "no name here"},
]


def _annotator(authority: FakeIamAuthority, catalog: FakeCatalogProvider | None = None, **settings_overrides):
    settings = make_settings(**settings_overrides)
    gateway = make_gateway(authority=authority, catalog=catalog, settings=settings)
    store = InMemoryAdminRoleStore()
    resolver = AdminRoleResolver(store, gateway, settings=settings)
    return AccessAnnotator(gateway, resolver, settings=settings), store


@pytest.mark.asyncio
async def test_dataset_tier_checks_each_dataset_once() -> None:
    authority = FakeIamAuthority(
        dataset_policies={"p1.sales": [viewer_binding(f"user:{ANA}")]},
        failing={"p2.broken"},
    )
    annotator, _store = _annotator(authority)

    result = await annotator.annotate(RESULTS, ANA)

    assert result.tier == "dataset"
    assert [item[ACCESS_FIELD] for item in result.items] == [True, True, False, False, False]
    assert authority.calls["dataset:p1.sales"] == 1
    assert authority.calls["dataset:p1.hr"] == 1
    assert [decision.resource_key for decision in result.decisions] == [
        "p1.sales",
        "p1.sales",
        "p1.hr",
        "p2.broken",
        None,
    ]
    assert len(result.accessible) == 2


@pytest.mark.asyncio
async def test_annotate_does_not_mutate_input() -> None:
    annotator, _store = _annotator(FakeIamAuthority())
    original = [catalog_item("bigquery:p1.sales.orders")]
    await annotator.annotate(original, ANA)
    assert ACCESS_FIELD not in original[0]


@pytest.mark.asyncio
async def test_project_tier_grants_all_without_dataset_checks() -> None:
    authority = FakeIamAuthority(project_policies={HOME_PROJECT: [{"role": "roles/viewer", "members": [f"user:{ANA}"]}]})
    annotator, _store = _annotator(authority)

    result = await annotator.annotate(RESULTS, ANA)

    assert result.tier == "project"
    assert all(item[ACCESS_FIELD] for item in result.items)
    assert not any(key.startswith("dataset:") for key in authority.calls)


@pytest.mark.asyncio
async def test_admin_tier_from_role_store() -> None:
    authority = FakeIamAuthority()
    annotator, store = _annotator(authority)
    await store.set(ANA, ROLE_SUPER_ADMIN, [], "root@example.com")

    result = await annotator.annotate(RESULTS, ANA)

    assert result.tier == "admin"
    assert all(item[ACCESS_FIELD] for item in result.items)
    assert sum(authority.calls.values()) == 0


@pytest.mark.asyncio
async def test_authority_outage_denies_everything() -> None:
    authority = FakeIamAuthority(failing={HOME_PROJECT, "p1.sales", "p1.hr", "p2.broken"})
    annotator, _store = _annotator(authority)

    result = await annotator.annotate(RESULTS, ANA)

    assert result.tier == "dataset"
    assert result.accessible == []


@pytest.mark.asyncio
async def test_empty_input() -> None:
    annotator, _store = _annotator(FakeIamAuthority())
    result = await annotator.annotate([], ANA)
    assert result.items == [] and result.decisions == []


@pytest.mark.asyncio
async def test_filter_accessible() -> None:
    authority = FakeIamAuthority(dataset_policies={"p1.hr": [viewer_binding(f"user:{ANA}")]})
    annotator, _store = _annotator(authority)
    accessible = await annotator.filter_accessible(RESULTS, ANA)
    assert [item["fullyQualifiedName"] for item in accessible] == ["bigquery:p1.hr.people"]


@pytest.mark.asyncio
async def test_list_accessible_tables_pages_and_groups() -> None:
    entries = [
        catalog_item("bigquery:p1.sales.orders"),
        catalog_item("bigquery:p1.sales.customers"),
        catalog_item("bigquery:p1.sales.orders"),
        catalog_item("bigquery:p1.hr.people"),
        catalog_item("bigquery:p1.sales"),
    ]
    authority = FakeIamAuthority(dataset_policies={"p1.sales": [viewer_binding(f"user:{ANA}")]})
    catalog = FakeCatalogProvider(entries=entries)
    annotator, _store = _annotator(authority, catalog, search_max_page_size=2)

    listing = await annotator.list_accessible_tables(ANA)

    assert catalog.calls["search_entries"] == 3
    assert [table["tableId"] for table in listing.tables] == ["customers", "orders"]
    assert listing.tables[0]["fullyQualifiedName"] == "bigquery:p1.sales.customers"
    assert list(listing.grouped_by_dataset) == ["p1.sales"]
    assert [table["tableId"] for table in listing.grouped_by_dataset["p1.sales"]] == ["customers", "orders"]


@pytest.mark.asyncio
async def test_failing_datasets_do_not_deny_a_healthy_one() -> None:
    broken = [catalog_item(f"bigquery:p1.broken_{index:02d}.t") for index in range(20)]
    authority = FakeIamAuthority(
        dataset_policies={"p1.zz_healthy": [viewer_binding(f"user:{ANA}")]},
        failing={f"p1.broken_{index:02d}" for index in range(20)},
    )
    annotator, _store = _annotator(authority, cb_failure_threshold=5, authority_max_concurrency=1)

    result = await annotator.annotate([*broken, catalog_item("bigquery:p1.zz_healthy.orders")], ANA)

    assert [item["fullyQualifiedName"] for item in result.accessible] == ["bigquery:p1.zz_healthy.orders"]


@pytest.mark.asyncio
async def test_list_accessible_tables_keeps_pages_read_before_outage() -> None:
    class FlakyCatalog(FakeCatalogProvider):
        async def search_entries(self, query, *, page_size, page_token=None):
            if page_token:
                raise ConnectionError("catalog down")
            return await super().search_entries(query, page_size=page_size, page_token=page_token)

    entries = [catalog_item("bigquery:p1.sales.orders"), catalog_item("bigquery:p1.sales.customers")]
    authority = FakeIamAuthority(dataset_policies={"p1.sales": [viewer_binding(f"user:{ANA}")]})
    annotator, _store = _annotator(authority, FlakyCatalog(entries=entries), search_max_page_size=1)

    listing = await annotator.list_accessible_tables(ANA)

    assert [table["tableId"] for table in listing.tables] == ["orders"]


@pytest.mark.asyncio
async def test_list_accessible_tables_empty_when_catalog_is_down() -> None:
    class BrokenCatalog(FakeCatalogProvider):
        async def search_entries(self, query, *, page_size, page_token=None):
            raise ConnectionError("catalog down")

    annotator, _store = _annotator(FakeIamAuthority(), BrokenCatalog())

    listing = await annotator.list_accessible_tables(ANA)

    assert listing.tables == [] and listing.grouped_by_dataset == {}
