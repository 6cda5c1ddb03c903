from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from cataloglens.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from cataloglens.apps.api.response import SuccessEnvelope, success_response
from cataloglens.services.telemetry import external_call_summary

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    # Per-integration calls/failures/error_rate over the last five minutes.
    integrations: dict[str, dict[str, float]] = Field(default_factory=dict)


@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok", integrations=external_call_summary())
    return success_response(request=request, data=payload.model_dump())
