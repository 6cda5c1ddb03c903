from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Literal, Mapping


Origin = Literal["inferred", "manual"]

ORIGIN_INFERRED: Origin = "inferred"
ORIGIN_MANUAL: Origin = "manual"


@dataclass(frozen=True)
class Column:
    name: str
    type: str | None = None


@dataclass(frozen=True)
class TableSchema:
    name: str
    columns: tuple[Column, ...] = ()


@dataclass(frozen=True)
class RelationshipEdge:
    table1: str
    table2: str
    label: str
    origin: Origin = ORIGIN_INFERRED
    # Column in table1 that produced an inferred edge.
    column: str | None = None
    confidence: str | None = None
    added_at: str | None = None

    @property
    def pair(self) -> frozenset[str]:
        return frozenset((self.table1, self.table2))

    def identity(self) -> tuple[frozenset[str], str]:
        # Edges are undirected for display; dedup ignores direction but keeps the label.
        return self.pair, self.label

    def as_manual(self, added_at: datetime) -> "RelationshipEdge":
        return replace(self, origin=ORIGIN_MANUAL, confidence="manual", added_at=added_at.isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RelationshipEdge":
        origin = raw.get("origin") or (ORIGIN_MANUAL if raw.get("confidence") == "manual" else ORIGIN_INFERRED)
        return cls(
            table1=str(raw["table1"]),
            table2=str(raw["table2"]),
            label=str(raw.get("label") or raw.get("relationship") or "references"),
            origin=origin,
            column=raw.get("column"),
            confidence=raw.get("confidence"),
            added_at=raw.get("added_at"),
        )


@dataclass
class RelationshipCacheEntry:
    project_id: str
    dataset_id: str
    edges: list[RelationshipEdge] = field(default_factory=list)
    table_names: list[str] = field(default_factory=list)
    # None until inference has run at least once for the dataset.
    snapshot_fingerprint: str | None = None
    computed_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def dataset_key(self) -> str:
        return f"{self.project_id}.{self.dataset_id}"

    @property
    def manual_edges(self) -> list[RelationshipEdge]:
        return [edge for edge in self.edges if edge.origin == ORIGIN_MANUAL]

    @property
    def inferred_edges(self) -> list[RelationshipEdge]:
        return [edge for edge in self.edges if edge.origin == ORIGIN_INFERRED]
