from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from cataloglens.apps.api.deps import Principal, Services, get_current_principal, get_services
from cataloglens.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from cataloglens.apps.api.response import SuccessEnvelope

router = APIRouter(prefix="/tables", tags=["tables"], responses=DEFAULT_ERROR_RESPONSES)


class AccessibleTablesResponse(BaseModel):
    tables: list[dict[str, Any]]
    grouped_by_dataset: dict[str, list[dict[str, Any]]]


@router.get(
    "/accessible",
    response_model=SuccessEnvelope[AccessibleTablesResponse] | AccessibleTablesResponse,
)
async def list_accessible_tables(
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> AccessibleTablesResponse:
    listing = await services.annotator.list_accessible_tables(principal.email)
    return AccessibleTablesResponse(tables=listing.tables, grouped_by_dataset=listing.grouped_by_dataset)
