from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True, order=True)
class DatasetKey:
    project_id: str
    dataset_id: str

    @property
    def canonical(self) -> str:
        return f"{self.project_id}.{self.dataset_id}"


@dataclass(frozen=True, order=True)
class TableReference:
    project_id: str
    dataset_id: str
    table_id: str

    @property
    def canonical(self) -> str:
        return f"{self.project_id}.{self.dataset_id}.{self.table_id}"

    @property
    def dataset_key(self) -> DatasetKey:
        return DatasetKey(self.project_id, self.dataset_id)

    def to_api(self) -> dict[str, str]:
        # Field names expected by the data agent datasource payload.
        return {"projectId": self.project_id, "datasetId": self.dataset_id, "tableId": self.table_id}


# BigQuery project ids allow domain-scoped forms like "example.com:project".
_PROJECT = r"[A-Za-z0-9][A-Za-z0-9\-_.:]*?"
_NAME = r"[A-Za-z0-9_\-$]+"

_RESOURCE_PATH = re.compile(
    r"^(?://)?(?:bigquery\.googleapis\.com/)?projects/(?P<project>[^/]+)/datasets/(?P<dataset>[^/]+)"
    r"(?:/tables/(?P<table>[^/]+))?$"
)
_SYSTEM_PREFIXED = re.compile(
    rf"^bigquery:(?P<project>{_PROJECT})\.(?P<dataset>{_NAME})(?:\.(?P<table>{_NAME}))?$"
)
_LEGACY = re.compile(rf"^(?!bigquery:)(?P<project>{_NAME}):(?P<dataset>{_NAME})(?:\.(?P<table>{_NAME}))?$")
_DOTTED = re.compile(rf"^(?P<project>{_NAME})\.(?P<dataset>{_NAME})(?:\.(?P<table>{_NAME}))?$")


def _match(fqn: Any) -> re.Match[str] | None:
    if not isinstance(fqn, str):
        return None
    value = fqn.strip().strip("`")
    if not value:
        return None
    # Dataplex entry names embed the BigQuery resource path after "/entries/".
    if "/entries/" in value:
        value = value.split("/entries/", 1)[1]
    for pattern in (_RESOURCE_PATH, _SYSTEM_PREFIXED, _LEGACY, _DOTTED):
        match = pattern.match(value)
        if match is not None:
            return match
    return None


def parse_dataset_key(fqn: Any) -> DatasetKey | None:
    """Return the dataset a table or dataset name belongs to, or None if unparseable."""
    match = _match(fqn)
    if match is None:
        return None
    return DatasetKey(match.group("project"), match.group("dataset"))


def parse_table_reference(fqn: Any) -> TableReference | None:
    """Return a TableReference for a table-level name, or None.

    Dataset-level names parse to a DatasetKey but not to a table reference.
    """
    match = _match(fqn)
    if match is None or not match.group("table"):
        return None
    return TableReference(match.group("project"), match.group("dataset"), match.group("table"))


def table_reference_from_mapping(raw: Mapping[str, Any]) -> TableReference | None:
    # Accept both camelCase (API payloads) and snake_case keys.
    project = raw.get("projectId") or raw.get("project_id")
    dataset = raw.get("datasetId") or raw.get("dataset_id")
    table = raw.get("tableId") or raw.get("table_id")
    if not all(isinstance(value, str) and value for value in (project, dataset, table)):
        return None
    return TableReference(project, dataset, table)


def item_fully_qualified_name(item: Mapping[str, Any]) -> str | None:
    # Catalog results carry the name in a few shapes depending on the search API version.
    for key in ("fullyQualifiedName", "fully_qualified_name"):
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    entry = item.get("dataplexEntry") or item.get("dataplex_entry")
    if isinstance(entry, Mapping):
        value = entry.get("fullyQualifiedName") or entry.get("fully_qualified_name")
        if isinstance(value, str) and value:
            return value
        value = entry.get("name")
        if isinstance(value, str) and value:
            return value
    value = item.get("linkedResource") or item.get("name")
    if isinstance(value, str) and value:
        return value
    return None
