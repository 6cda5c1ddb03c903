from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cataloglens.apps.api.deps import Principal, Services, get_current_principal, get_services
from cataloglens.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from cataloglens.apps.api.response import SuccessEnvelope
from cataloglens.core.config import get_settings
from cataloglens.domain.access import Tier


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"], responses=DEFAULT_ERROR_RESPONSES)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    page_size: int | None = Field(default=None, ge=1)
    page_token: str | None = None
    # Drop items the principal cannot read instead of returning them flagged false.
    accessible_only: bool = False

    model_config = {"extra": "forbid"}


class SearchResponse(BaseModel):
    results: list[dict[str, Any]]
    next_page_token: str | None = None
    total_size: int | None = None
    tier: Tier


class AnnotateRequest(BaseModel):
    results: list[dict[str, Any]]


class AnnotateResponse(BaseModel):
    results: list[dict[str, Any]]
    tier: Tier


@router.post("", response_model=SuccessEnvelope[SearchResponse] | SearchResponse)
async def search(
    payload: SearchRequest,
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> SearchResponse:
    settings = get_settings()
    page_size = min(payload.page_size or settings.search_default_page_size, settings.search_max_page_size)
    page = await services.gateway.search_entries(
        payload.query, page_size=page_size, page_token=payload.page_token
    )
    annotated = await services.annotator.annotate(page.results, principal.email)
    results = annotated.accessible if payload.accessible_only else annotated.items
    logger.info(
        "search_served principal=%s results=%d accessible=%d tier=%s",
        principal.email,
        len(annotated.items),
        len(annotated.accessible),
        annotated.tier,
    )
    return SearchResponse(
        results=results,
        next_page_token=page.next_page_token,
        total_size=page.total_size,
        tier=annotated.tier,
    )


@router.post("/annotate", response_model=SuccessEnvelope[AnnotateResponse] | AnnotateResponse)
async def annotate(
    payload: AnnotateRequest,
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> AnnotateResponse:
    annotated = await services.annotator.annotate(payload.results, principal.email)
    return AnnotateResponse(results=annotated.items, tier=annotated.tier)
