from __future__ import annotations

from cataloglens.core.config import get_settings
from cataloglens.core.errors import CatalogError, ProviderConfigError
from cataloglens.domain.refs import DatasetKey
from cataloglens.domain.relationships import Column
from cataloglens.providers.catalog.base import SearchPage
from cataloglens.providers.google.http import GoogleRestClient


_SEARCH_URL = "https://dataplex.googleapis.com/v1/projects/{project}/locations/{location}:searchEntries"
_BQ_URL = "https://bigquery.googleapis.com/bigquery/v2/projects/{project}/datasets/{dataset}/tables"
_TABLES_PAGE_SIZE = 1000


class GoogleCatalogProvider:
    """Dataplex catalog search plus BigQuery table metadata."""

    def __init__(self, rest: GoogleRestClient | None = None) -> None:
        self._settings = get_settings()
        self._rest = rest or GoogleRestClient(error_cls=CatalogError)

    async def search_entries(self, query: str, *, page_size: int, page_token: str | None = None) -> SearchPage:
        project = self._settings.google_cloud_project_id
        if not project:
            raise ProviderConfigError("Catalog search needs GOOGLE_CLOUD_PROJECT_ID in .env.")
        url = _SEARCH_URL.format(project=project, location=self._settings.dataplex_location)
        body: dict[str, object] = {"query": query, "pageSize": page_size}
        if page_token:
            body["pageToken"] = page_token
        payload = await self._rest.request("POST", url, json=body)
        total = payload.get("totalSize")
        return SearchPage(
            results=list(payload.get("results") or []),
            next_page_token=payload.get("nextPageToken") or None,
            total_size=int(total) if total is not None else None,
        )

    async def list_tables(self, dataset_key: DatasetKey) -> list[str]:
        url = _BQ_URL.format(project=dataset_key.project_id, dataset=dataset_key.dataset_id)
        names: list[str] = []
        page_token: str | None = None
        while True:
            params: dict[str, object] = {"maxResults": _TABLES_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            payload = await self._rest.request("GET", url, params=params)
            for table in payload.get("tables") or []:
                ref = table.get("tableReference") or {}
                if table.get("type", "TABLE") in {"TABLE", "VIEW", "MATERIALIZED_VIEW", "EXTERNAL"} and ref.get("tableId"):
                    names.append(ref["tableId"])
            page_token = payload.get("nextPageToken")
            if not page_token:
                return names

    async def get_table_schema(self, project_id: str, dataset_id: str, table_id: str) -> list[Column]:
        url = f"{_BQ_URL.format(project=project_id, dataset=dataset_id)}/{table_id}"
        payload = await self._rest.request("GET", url)
        fields = (payload.get("schema") or {}).get("fields") or []
        return [Column(name=str(field["name"]), type=field.get("type")) for field in fields if field.get("name")]

    async def aclose(self) -> None:
        await self._rest.aclose()
