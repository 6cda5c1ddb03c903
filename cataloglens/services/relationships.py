from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Literal, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cataloglens.core.config import Settings, get_settings
from cataloglens.core.errors import RelationshipStoreError
from cataloglens.domain.refs import DatasetKey
from cataloglens.domain.relationships import (
    ORIGIN_INFERRED,
    Column,
    RelationshipCacheEntry,
    RelationshipEdge,
    TableSchema,
)
from cataloglens.persistence.repos import relationships as relationships_repo
from cataloglens.services.gateway import AuthorityGateway


logger = logging.getLogger(__name__)

REFERENCES_LABEL = "references"

# Suffix conventions for FK-like columns, strongest first.
FK_SUFFIXES: tuple[tuple[str, str], ...] = (
    ("_id", "high"),
    ("_fk", "high"),
    ("_key", "medium"),
    ("_ref", "medium"),
    ("id", "low"),
)

_TYPE_FAMILIES = {
    "integer": {"INT64", "INTEGER", "INT", "BIGINT", "SMALLINT", "TINYINT", "BYTEINT"},
    "string": {"STRING", "VARCHAR", "CHAR", "TEXT", "NVARCHAR"},
    "numeric": {"NUMERIC", "BIGNUMERIC", "DECIMAL", "BIGDECIMAL", "FLOAT64", "FLOAT", "DOUBLE"},
    "bytes": {"BYTES", "BINARY"},
    "temporal": {"DATE", "DATETIME", "TIMESTAMP", "TIME"},
    "boolean": {"BOOL", "BOOLEAN"},
}


def singular(name: str) -> str:
    lowered = name.lower()
    if lowered.endswith("ies") and len(lowered) > 3:
        return lowered[:-3] + "y"
    if lowered.endswith(("sses", "xes", "zes", "ches", "shes")):
        return lowered[:-2]
    if lowered.endswith("s") and not lowered.endswith("ss") and len(lowered) > 1:
        return lowered[:-1]
    return lowered


def type_family(type_name: str | None) -> str | None:
    if not type_name:
        return None
    # Parameterized types ("NUMERIC(10, 2)", "STRING(64)") share their base family.
    base = type_name.upper().split("(", 1)[0].strip()
    for family, members in _TYPE_FAMILIES.items():
        if base in members:
            return family
    return base


def types_compatible(left: str | None, right: str | None) -> bool:
    left_family, right_family = type_family(left), type_family(right)
    if left_family is None or right_family is None:
        return True
    return left_family == right_family


def identifying_column(table: TableSchema) -> Column | None:
    by_name = {column.name.lower(): column for column in table.columns}
    lowered = table.name.lower()
    for candidate in ("id", f"{singular(lowered)}_id", f"{lowered}_id"):
        column = by_name.get(candidate)
        if column is not None:
            return column
    return None


def _match_column(column: Column, target: TableSchema, target_id: Column | None) -> str | None:
    """Return a confidence when column looks like a reference to target."""
    name = column.name.lower()
    if target_id is not None and target_id.name.lower() != "id" and name == target_id.name.lower():
        return "high" if types_compatible(column.type, target_id.type) else None
    stems = {singular(target.name), target.name.lower()}
    for suffix, confidence in FK_SUFFIXES:
        if not name.endswith(suffix):
            continue
        if name[: -len(suffix)] in stems:
            if target_id is not None and not types_compatible(column.type, target_id.type):
                return None
            return confidence
        # Only the first matching suffix is considered, as "_id" also ends with "id".
        return None
    return None


def infer_relationships(tables: Sequence[TableSchema]) -> list[RelationshipEdge]:
    """Infer FK-like edges from column naming conventions.

    For every ordered pair (T1, T2) a column of T1 references T2 when it
    equals T2's identifying column, or is named ``singular(T2)`` / ``T2``
    plus an FK suffix, and the column types are compatible. Edges are
    deduplicated on the unordered table pair; the first match wins.
    """
    edges: list[RelationshipEdge] = []
    seen_pairs: set[frozenset[str]] = set()
    identifiers = {table.name: identifying_column(table) for table in tables}
    for source in tables:
        own_id = identifiers[source.name]
        for target in tables:
            if target.name.lower() == source.name.lower():
                continue
            pair = frozenset((source.name, target.name))
            if pair in seen_pairs:
                continue
            for column in source.columns:
                if own_id is not None and column.name.lower() == own_id.name.lower():
                    continue
                confidence = _match_column(column, target, identifiers[target.name])
                if confidence is None:
                    continue
                edges.append(
                    RelationshipEdge(
                        table1=source.name,
                        table2=target.name,
                        label=REFERENCES_LABEL,
                        origin=ORIGIN_INFERRED,
                        column=column.name,
                        confidence=confidence,
                    )
                )
                seen_pairs.add(pair)
                break
    return edges


def snapshot_fingerprint(tables: Iterable[TableSchema]) -> str:
    parts = sorted(
        f"{table.name}:{column.name}:{column.type or ''}" for table in tables for column in table.columns
    )
    parts.extend(sorted(f"{table.name}:" for table in tables))
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()


def merge_edges(*groups: Iterable[RelationshipEdge]) -> list[RelationshipEdge]:
    # First occurrence of an identity wins, so earlier groups take precedence.
    merged: list[RelationshipEdge] = []
    seen: set[tuple[frozenset[str], str]] = set()
    for group in groups:
        for edge in group:
            identity = edge.identity()
            if identity in seen:
                continue
            seen.add(identity)
            merged.append(edge)
    return merged


class RelationshipStore(Protocol):
    async def get(self, dataset_key: DatasetKey) -> RelationshipCacheEntry | None:
        ...

    async def put(self, entry: RelationshipCacheEntry) -> None:
        ...

    async def delete(self, dataset_key: DatasetKey) -> bool:
        ...


@dataclass
class InMemoryRelationshipStore:
    entries: dict[str, RelationshipCacheEntry] = field(default_factory=dict)

    async def get(self, dataset_key: DatasetKey) -> RelationshipCacheEntry | None:
        entry = self.entries.get(dataset_key.canonical)
        return replace(entry, edges=list(entry.edges), table_names=list(entry.table_names)) if entry else None

    async def put(self, entry: RelationshipCacheEntry) -> None:
        self.entries[entry.dataset_key] = replace(
            entry, edges=list(entry.edges), table_names=list(entry.table_names)
        )

    async def delete(self, dataset_key: DatasetKey) -> bool:
        return self.entries.pop(dataset_key.canonical, None) is not None


def _as_utc(value: datetime | None) -> datetime | None:
    # sqlite drops tzinfo on round trip.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlRelationshipStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, dataset_key: DatasetKey) -> RelationshipCacheEntry | None:
        try:
            async with self._session_factory() as session:
                row = await relationships_repo.get_by_dataset_key(session, dataset_key.canonical)
        except SQLAlchemyError as exc:
            raise RelationshipStoreError(f"failed to read relationships for {dataset_key.canonical}") from exc
        if row is None:
            return None
        return RelationshipCacheEntry(
            project_id=row.project_id,
            dataset_id=row.dataset_id,
            edges=[RelationshipEdge.from_dict(raw) for raw in row.edges_json or []],
            table_names=list(row.table_names_json or []),
            snapshot_fingerprint=row.snapshot_fingerprint,
            computed_at=_as_utc(row.computed_at),
            updated_at=_as_utc(row.updated_at),
        )

    async def put(self, entry: RelationshipCacheEntry) -> None:
        try:
            async with self._session_factory() as session:
                await relationships_repo.upsert(
                    session,
                    dataset_key=entry.dataset_key,
                    project_id=entry.project_id,
                    dataset_id=entry.dataset_id,
                    edges_json=[edge.to_dict() for edge in entry.edges],
                    table_names_json=list(entry.table_names),
                    snapshot_fingerprint=entry.snapshot_fingerprint,
                    computed_at=entry.computed_at,
                    now=entry.updated_at or datetime.now(timezone.utc),
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise RelationshipStoreError(f"failed to write relationships for {entry.dataset_key}") from exc

    async def delete(self, dataset_key: DatasetKey) -> bool:
        try:
            async with self._session_factory() as session:
                deleted = await relationships_repo.delete_by_dataset_key(session, dataset_key.canonical)
                await session.commit()
        except SQLAlchemyError as exc:
            raise RelationshipStoreError(f"failed to delete relationships for {dataset_key.canonical}") from exc
        return deleted


@dataclass
class RelationshipResult:
    edges: list[RelationshipEdge]
    source: Literal["cache", "inferred"]


class RelationshipService:
    def __init__(
        self,
        gateway: AuthorityGateway,
        store: RelationshipStore,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _load(self, key: DatasetKey) -> RelationshipCacheEntry | None:
        try:
            return await self._store.get(key)
        except RelationshipStoreError as exc:
            # Treat an unreadable cache as a miss; inference still answers.
            logger.warning("relationships_cache_read_failed dataset=%s", key.canonical, exc_info=exc)
            return None

    def _is_fresh(self, entry: RelationshipCacheEntry) -> bool:
        if entry.computed_at is None or not entry.edges:
            return False
        ttl_hours = self._settings.relationship_cache_ttl_hours
        if ttl_hours <= 0:
            return True
        return self._clock() - entry.computed_at <= timedelta(hours=ttl_hours)

    async def get_relationships(
        self, project_id: str, dataset_id: str, force_refresh: bool = False
    ) -> RelationshipResult:
        key = DatasetKey(project_id, dataset_id)
        entry = await self._load(key)
        if not force_refresh and entry is not None and self._is_fresh(entry):
            logger.info("relationships_cache_hit dataset=%s edges=%d", key.canonical, len(entry.edges))
            return RelationshipResult(edges=entry.edges, source="cache")

        manual = entry.manual_edges if entry is not None else []
        tables = await self._gateway.fetch_schema(key)
        if not tables:
            # Nothing to infer from; keep whatever was stored rather than overwrite it.
            logger.warning("relationships_no_tables dataset=%s", key.canonical)
            return RelationshipResult(edges=merge_edges(manual), source="inferred")

        inferred = infer_relationships(tables)
        edges = merge_edges(manual, inferred)
        now = self._clock()
        updated = RelationshipCacheEntry(
            project_id=project_id,
            dataset_id=dataset_id,
            edges=edges,
            table_names=sorted(table.name for table in tables),
            snapshot_fingerprint=snapshot_fingerprint(tables),
            computed_at=now,
            updated_at=now,
        )
        try:
            await self._store.put(updated)
        except RelationshipStoreError as exc:
            logger.warning("relationships_cache_write_failed dataset=%s", key.canonical, exc_info=exc)
        logger.info(
            "relationships_inferred dataset=%s tables=%d inferred=%d manual=%d",
            key.canonical,
            len(tables),
            len(inferred),
            len(manual),
        )
        return RelationshipResult(edges=edges, source="inferred")

    async def add_manual_relationship(
        self, project_id: str, dataset_id: str, edge: RelationshipEdge
    ) -> list[RelationshipEdge]:
        key = DatasetKey(project_id, dataset_id)
        entry = await self._store.get(key)
        now = self._clock()
        if entry is None:
            entry = RelationshipCacheEntry(project_id=project_id, dataset_id=dataset_id)
        manual_edge = edge.as_manual(now)
        # Only manual edges count as duplicates; a manual edge shadows its inferred twin.
        if any(existing.identity() == manual_edge.identity() for existing in entry.manual_edges):
            logger.info("relationships_manual_duplicate dataset=%s pair=%s", key.canonical, sorted(edge.pair))
            return entry.edges
        entry.edges = merge_edges([*entry.manual_edges, manual_edge], entry.inferred_edges)
        entry.updated_at = now
        await self._store.put(entry)
        logger.info("relationships_manual_added dataset=%s pair=%s", key.canonical, sorted(edge.pair))
        return entry.edges

    async def invalidate_cache(self, project_id: str, dataset_id: str) -> bool:
        key = DatasetKey(project_id, dataset_id)
        deleted = await self._store.delete(key)
        logger.info("relationships_cache_invalidated dataset=%s existed=%s", key.canonical, deleted)
        return deleted
