from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cataloglens.domain.models import DatasetRelationship


async def get_by_dataset_key(session: AsyncSession, dataset_key: str) -> DatasetRelationship | None:
    result = await session.execute(
        select(DatasetRelationship).where(DatasetRelationship.dataset_key == dataset_key)
    )
    return result.scalar_one_or_none()


async def upsert(
    session: AsyncSession,
    *,
    dataset_key: str,
    project_id: str,
    dataset_id: str,
    edges_json: list[dict[str, Any]],
    table_names_json: list[str],
    snapshot_fingerprint: str | None,
    computed_at: datetime | None,
    now: datetime,
) -> DatasetRelationship:
    # Keep a single row per dataset; callers commit.
    existing = await get_by_dataset_key(session, dataset_key)
    if existing is None:
        row = DatasetRelationship(
            dataset_key=dataset_key,
            project_id=project_id,
            dataset_id=dataset_id,
            edges_json=edges_json,
            table_names_json=table_names_json,
            snapshot_fingerprint=snapshot_fingerprint,
            computed_at=computed_at,
            updated_at=now,
        )
        session.add(row)
        return row
    existing.edges_json = edges_json
    existing.table_names_json = table_names_json
    existing.snapshot_fingerprint = snapshot_fingerprint
    existing.computed_at = computed_at
    existing.updated_at = now
    return existing


async def delete_by_dataset_key(session: AsyncSession, dataset_key: str) -> bool:
    result = await session.execute(
        delete(DatasetRelationship).where(DatasetRelationship.dataset_key == dataset_key)
    )
    return bool(result.rowcount)
