from __future__ import annotations

from collections import Counter
from typing import Any

from cataloglens.core.errors import CatalogError
from cataloglens.domain.refs import DatasetKey
from cataloglens.domain.relationships import Column
from cataloglens.providers.catalog.base import SearchPage


class FakeCatalogProvider:
    """Deterministic catalog backed by dicts; records calls for assertions."""

    def __init__(
        self,
        entries: list[dict[str, Any]] | None = None,
        schemas: dict[str, dict[str, list[tuple[str, str | None]]]] | None = None,
        failing_tables: set[str] | None = None,
        failing_datasets: set[str] | None = None,
    ) -> None:
        self.entries = entries or []
        # {"project.dataset": {"table": [(column, type), ...]}}
        self.schemas = schemas or {}
        # "project.dataset.table" names whose schema fetch raises.
        self.failing_tables = failing_tables or set()
        self.failing_datasets = failing_datasets or set()
        self.calls: Counter[str] = Counter()

    async def search_entries(self, query: str, *, page_size: int, page_token: str | None = None) -> SearchPage:
        self.calls["search_entries"] += 1
        start = int(page_token or 0)
        page = self.entries[start : start + page_size]
        next_start = start + page_size
        return SearchPage(
            results=[dict(item) for item in page],
            next_page_token=str(next_start) if next_start < len(self.entries) else None,
            total_size=len(self.entries),
        )

    async def list_tables(self, dataset_key: DatasetKey) -> list[str]:
        self.calls["list_tables"] += 1
        if dataset_key.canonical in self.failing_datasets:
            raise CatalogError(f"dataset {dataset_key.canonical} unavailable", status_code=503)
        return list(self.schemas.get(dataset_key.canonical, {}))

    async def get_table_schema(self, project_id: str, dataset_id: str, table_id: str) -> list[Column]:
        self.calls["get_table_schema"] += 1
        if f"{project_id}.{dataset_id}.{table_id}" in self.failing_tables:
            raise CatalogError(f"table {table_id} unavailable", status_code=503)
        columns = self.schemas.get(f"{project_id}.{dataset_id}", {}).get(table_id, [])
        return [Column(name=name, type=type_) for name, type_ in columns]

    async def aclose(self) -> None:
        return None
