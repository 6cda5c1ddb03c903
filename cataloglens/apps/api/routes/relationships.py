from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cataloglens.apps.api.deps import (
    Principal,
    Services,
    forbidden_error,
    get_current_principal,
    get_services,
)
from cataloglens.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from cataloglens.apps.api.response import SuccessEnvelope
from cataloglens.domain.relationships import RelationshipEdge
from cataloglens.services.relationships import REFERENCES_LABEL

router = APIRouter(
    prefix="/datasets/{project_id}/{dataset_id}/relationships",
    tags=["relationships"],
    responses=DEFAULT_ERROR_RESPONSES,
)


class EdgeModel(BaseModel):
    table1: str
    table2: str
    label: str
    origin: Literal["inferred", "manual"]
    column: str | None = None
    confidence: str | None = None
    added_at: str | None = None


class RelationshipsResponse(BaseModel):
    edges: list[EdgeModel]
    source: Literal["cache", "inferred"]


class ManualEdgeRequest(BaseModel):
    table1: str = Field(min_length=1)
    table2: str = Field(min_length=1)
    label: str = Field(default=REFERENCES_LABEL, min_length=1)

    model_config = {"extra": "forbid"}


class ManualEdgeResponse(BaseModel):
    edges: list[EdgeModel]


class InvalidateResponse(BaseModel):
    invalidated: bool


def _edges(edges: list[RelationshipEdge]) -> list[EdgeModel]:
    return [EdgeModel(**edge.to_dict()) for edge in edges]


@router.get("", response_model=SuccessEnvelope[RelationshipsResponse] | RelationshipsResponse)
async def get_relationships(
    project_id: str,
    dataset_id: str,
    refresh: bool = Query(default=False),
    _principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> RelationshipsResponse:
    result = await services.relationships.get_relationships(project_id, dataset_id, force_refresh=refresh)
    return RelationshipsResponse(edges=_edges(result.edges), source=result.source)


@router.post("", response_model=SuccessEnvelope[ManualEdgeResponse] | ManualEdgeResponse)
async def add_relationship(
    project_id: str,
    dataset_id: str,
    payload: ManualEdgeRequest,
    _principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> ManualEdgeResponse:
    edge = RelationshipEdge(table1=payload.table1, table2=payload.table2, label=payload.label)
    edges = await services.relationships.add_manual_relationship(project_id, dataset_id, edge)
    return ManualEdgeResponse(edges=_edges(edges))


@router.delete("/cache", response_model=SuccessEnvelope[InvalidateResponse] | InvalidateResponse)
async def invalidate_relationships(
    project_id: str,
    dataset_id: str,
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> InvalidateResponse:
    # Project admins may only clear datasets in the projects assigned to them.
    if not await services.admin_resolver.is_project_admin(principal.email, project_id):
        raise forbidden_error("Admin role required for this operation")
    invalidated = await services.relationships.invalidate_cache(project_id, dataset_id)
    return InvalidateResponse(invalidated=invalidated)
