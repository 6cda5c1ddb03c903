from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field

from cataloglens.apps.api.deps import Principal, Services, get_current_principal, get_services
from cataloglens.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from cataloglens.apps.api.response import SuccessEnvelope
from cataloglens.domain.refs import TableReference

router = APIRouter(prefix="/agents", tags=["agents"], responses=DEFAULT_ERROR_RESPONSES)


class TableReferenceModel(BaseModel):
    project_id: str = Field(min_length=1, validation_alias=AliasChoices("projectId", "project_id"))
    dataset_id: str = Field(min_length=1, validation_alias=AliasChoices("datasetId", "dataset_id"))
    table_id: str = Field(min_length=1, validation_alias=AliasChoices("tableId", "table_id"))

    def to_reference(self) -> TableReference:
        return TableReference(self.project_id, self.dataset_id, self.table_id)


class AgentRequest(BaseModel):
    table_references: list[TableReferenceModel] = Field(min_length=1)
    system_instruction: str = ""


class AgentResponse(BaseModel):
    # None tells the caller to use an inline context for this conversation.
    agent_name: str | None
    cache_key: str
    cached: bool


@router.post("", response_model=SuccessEnvelope[AgentResponse] | AgentResponse)
async def get_or_create_agent(
    payload: AgentRequest,
    _principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> AgentResponse:
    refs = [item.to_reference() for item in payload.table_references]
    lookup = await services.agents.lookup(refs, payload.system_instruction)
    return AgentResponse(
        agent_name=lookup.handle.external_resource_name if lookup.handle is not None else None,
        cache_key=lookup.cache_key,
        cached=lookup.cached,
    )
