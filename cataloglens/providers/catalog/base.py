from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from cataloglens.domain.refs import DatasetKey
from cataloglens.domain.relationships import Column


@dataclass
class SearchPage:
    results: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: str | None = None
    total_size: int | None = None


class CatalogProvider(Protocol):
    async def search_entries(self, query: str, *, page_size: int, page_token: str | None = None) -> SearchPage:
        ...

    async def list_tables(self, dataset_key: DatasetKey) -> list[str]:
        ...

    async def get_table_schema(self, project_id: str, dataset_id: str, table_id: str) -> list[Column]:
        ...
