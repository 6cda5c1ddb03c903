from __future__ import annotations

import json

import httpx
import pytest

from cataloglens.core.config import get_settings
from cataloglens.core.errors import (
    AgentConflictError,
    AgentProvisioningError,
    AuthorityAuthError,
    AuthorityError,
    CatalogError,
    ProviderConfigError,
)
from cataloglens.domain.refs import DatasetKey, TableReference
from cataloglens.providers.agents.gemini_data_agents import GeminiDataAgentProvider
from cataloglens.providers.authority.google_iam import GoogleIamAuthority, access_entries_to_bindings
from cataloglens.providers.catalog.google_catalog import GoogleCatalogProvider
from cataloglens.providers.google.http import GoogleRestClient


class StaticTokens:
    async def token(self) -> str:
        return "test-token"


def _rest(handler, *, error_cls=AuthorityError, auth_error_cls=None) -> GoogleRestClient:
    return GoogleRestClient(
        error_cls=error_cls,
        auth_error_cls=auth_error_cls,
        token_source=StaticTokens(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_access_entries_to_bindings() -> None:
    bindings = access_entries_to_bindings(
        [
            {"role": "READER", "userByEmail": "ana@example.com"},
            {"role": "READER", "groupByEmail": "eng@example.com"},
            {"role": "WRITER", "userByEmail": "etl@proj.iam.gserviceaccount.com"},
            {"role": "roles/bigquery.dataOwner", "iamMember": "principal://custom"},
            {"role": "READER", "specialGroup": "allAuthenticatedUsers"},
            {"view": {"projectId": "p", "datasetId": "d", "tableId": "v"}},
        ]
    )
    by_role = {binding["role"]: binding["members"] for binding in bindings}
    assert by_role["roles/bigquery.dataViewer"] == [
        "user:ana@example.com",
        "group:eng@example.com",
        "allAuthenticatedUsers",
    ]
    assert by_role["roles/bigquery.dataEditor"] == ["serviceAccount:etl@proj.iam.gserviceaccount.com"]
    assert by_role["roles/bigquery.dataOwner"] == ["principal://custom"]


@pytest.mark.asyncio
async def test_iam_authority_reads_project_and_dataset_policies() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        assert request.headers["Authorization"] == "Bearer test-token"
        if request.url.path.endswith(":getIamPolicy"):
            return httpx.Response(200, json={"bindings": [{"role": "roles/viewer", "members": ["user:a@x.com"]}]})
        return httpx.Response(200, json={"access": [{"role": "READER", "userByEmail": "a@x.com"}]})

    authority = GoogleIamAuthority(_rest(handler, auth_error_cls=AuthorityAuthError))
    assert await authority.get_project_iam_policy("p1") == [{"role": "roles/viewer", "members": ["user:a@x.com"]}]
    assert await authority.get_resource_iam_policy(DatasetKey("p1", "sales")) == [
        {"role": "roles/bigquery.dataViewer", "members": ["user:a@x.com"]}
    ]
    assert seen == [
        ("POST", "/v1/projects/p1:getIamPolicy"),
        ("GET", "/bigquery/v2/projects/p1/datasets/sales"),
    ]
    await authority.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error_type"),
    [(403, AuthorityAuthError), (404, AuthorityError), (500, AuthorityError)],
)
async def test_rest_client_maps_http_errors(status: int, error_type: type[Exception]) -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"code": status, "message": "nope"}})

    client = _rest(handler, auth_error_cls=AuthorityAuthError)
    with pytest.raises(error_type) as excinfo:
        await client.request("GET", "https://example.test/x")
    assert excinfo.value.status_code == status
    assert str(excinfo.value) == "nope"


@pytest.mark.asyncio
async def test_rest_client_maps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(AuthorityError) as excinfo:
        await _rest(handler).request("GET", "https://example.test/x")
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_catalog_lists_tables_across_pages_and_reads_schema(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT_ID", "p1")
    get_settings.cache_clear()

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/tables") and "pageToken" not in request.url.params:
            return httpx.Response(
                200,
                json={
                    "tables": [{"tableReference": {"tableId": "orders"}, "type": "TABLE"}],
                    "nextPageToken": "2",
                },
            )
        if path.endswith("/tables"):
            return httpx.Response(
                200,
                json={
                    "tables": [
                        {"tableReference": {"tableId": "customers"}, "type": "VIEW"},
                        {"tableReference": {"tableId": "snap"}, "type": "SNAPSHOT"},
                    ]
                },
            )
        if path.endswith("/tables/orders"):
            return httpx.Response(
                200, json={"schema": {"fields": [{"name": "order_id", "type": "INTEGER"}, {"type": "STRING"}]}}
            )
        if path.endswith(":searchEntries"):
            body = json.loads(request.content)
            assert body == {"query": "orders", "pageSize": 5}
            return httpx.Response(200, json={"results": [{"name": "x"}], "totalSize": "1"})
        return httpx.Response(404)

    catalog = GoogleCatalogProvider(_rest(handler, error_cls=CatalogError))
    assert await catalog.list_tables(DatasetKey("p1", "sales")) == ["orders", "customers"]
    columns = await catalog.get_table_schema("p1", "sales", "orders")
    assert [(column.name, column.type) for column in columns] == [("order_id", "INTEGER")]
    page = await catalog.search_entries("orders", page_size=5)
    assert page.results == [{"name": "x"}] and page.total_size == 1 and page.next_page_token is None


@pytest.mark.asyncio
async def test_catalog_search_requires_project(monkeypatch) -> None:
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT_ID", raising=False)
    get_settings.cache_clear()
    catalog = GoogleCatalogProvider(_rest(lambda request: httpx.Response(200, json={}), error_cls=CatalogError))
    with pytest.raises(ProviderConfigError):
        await catalog.search_entries("orders", page_size=5)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "message"),
    [(409, "conflict"), (400, "Resource already exists")],
)
async def test_data_agent_conflicts(monkeypatch, status: int, message: str) -> None:
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT_ID", "p1")
    get_settings.cache_clear()

    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": message}})

    provider = GeminiDataAgentProvider(_rest(handler, error_cls=AgentProvisioningError))
    with pytest.raises(AgentConflictError) as excinfo:
        await provider.create("agent_abc", [TableReference("p1", "sales", "orders")], "")
    assert excinfo.value.agent_id == "agent_abc"


@pytest.mark.asyncio
async def test_data_agent_create_payload(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT_ID", "p1")
    monkeypatch.setenv("GOOGLE_CLOUD_LOCATION", "europe-west1")
    get_settings.cache_clear()
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        # Long-running operation response; the provider answers with the deterministic name.
        return httpx.Response(200, json={"name": "projects/p1/locations/europe-west1/operations/op-1"})

    provider = GeminiDataAgentProvider(_rest(handler, error_cls=AgentProvisioningError))
    name = await provider.create("agent_abc", [TableReference("p1", "sales", "orders")], "be brief")

    assert name == "projects/p1/locations/europe-west1/dataAgents/agent_abc"
    assert "data_agent_id=agent_abc" in captured["url"]
    context = captured["body"]["data_analytics_agent"]["published_context"]
    assert context["systemInstruction"] == "be brief"
    assert context["datasourceReferences"]["bq"]["tableReferences"] == [
        {"projectId": "p1", "datasetId": "sales", "tableId": "orders"}
    ]
