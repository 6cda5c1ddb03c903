from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from cataloglens.apps.api.deps import Principal, Services, get_services, require_super_admin
from cataloglens.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from cataloglens.apps.api.response import SuccessEnvelope
from cataloglens.services.admin_roles import ROLE_PROJECT_ADMIN, ROLE_SUPER_ADMIN, AdminRoleRecord

router = APIRouter(prefix="/admin/roles", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


class AdminRoleResponse(BaseModel):
    email: str
    role: str
    assigned_projects: list[str]
    is_active: bool
    created_by: str | None = None
    updated_at: str | None = None


class AdminRoleRequest(BaseModel):
    role: Literal["super-admin", "project-admin"]
    assigned_projects: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class DeactivateResponse(BaseModel):
    deactivated: bool


def _to_response(record: AdminRoleRecord) -> AdminRoleResponse:
    return AdminRoleResponse(
        email=record.email,
        role=record.role,
        assigned_projects=list(record.assigned_projects),
        is_active=record.is_active,
        created_by=record.created_by,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


@router.get("/{email}", response_model=SuccessEnvelope[AdminRoleResponse] | AdminRoleResponse)
async def get_admin_role(
    email: str,
    _principal: Principal = Depends(require_super_admin),
    services: Services = Depends(get_services),
) -> AdminRoleResponse:
    record = await services.admin_store.get(email)
    if record is None:
        raise HTTPException(status_code=404, detail="Admin role not found")
    return _to_response(record)


@router.put("/{email}", response_model=SuccessEnvelope[AdminRoleResponse] | AdminRoleResponse)
async def put_admin_role(
    email: str,
    payload: AdminRoleRequest,
    principal: Principal = Depends(require_super_admin),
    services: Services = Depends(get_services),
) -> AdminRoleResponse:
    if payload.role == ROLE_PROJECT_ADMIN and not payload.assigned_projects:
        raise HTTPException(
            status_code=422,
            detail={"code": "VALIDATION_ERROR", "message": "project-admin requires assigned_projects"},
        )
    record = await services.admin_store.set(
        email,
        payload.role,
        payload.assigned_projects if payload.role != ROLE_SUPER_ADMIN else [],
        principal.email,
    )
    return _to_response(record)


@router.delete("/{email}", response_model=SuccessEnvelope[DeactivateResponse] | DeactivateResponse)
async def delete_admin_role(
    email: str,
    _principal: Principal = Depends(require_super_admin),
    services: Services = Depends(get_services),
) -> DeactivateResponse:
    return DeactivateResponse(deactivated=await services.admin_store.deactivate(email))
