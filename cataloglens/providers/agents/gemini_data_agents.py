from __future__ import annotations

import logging
from typing import Sequence

from cataloglens.core.config import get_settings
from cataloglens.core.errors import AgentConflictError, AgentProvisioningError, ProviderConfigError
from cataloglens.domain.refs import TableReference
from cataloglens.providers.google.http import GoogleRestClient

logger = logging.getLogger(__name__)

_BASE_URL = "https://geminidataanalytics.googleapis.com/v1beta"


class GeminiDataAgentProvider:
    """Gemini Data Analytics data agents bound to BigQuery tables."""

    def __init__(self, rest: GoogleRestClient | None = None) -> None:
        self._settings = get_settings()
        self._rest = rest or GoogleRestClient(error_cls=AgentProvisioningError)

    def _parent(self) -> str:
        project = self._settings.google_cloud_project_id
        location = self._settings.google_cloud_location
        if not project or not location:
            raise ProviderConfigError(
                "Data agent config missing: set GOOGLE_CLOUD_PROJECT_ID and GOOGLE_CLOUD_LOCATION in .env."
            )
        return f"projects/{project}/locations/{location}"

    async def create(self, agent_id: str, refs: Sequence[TableReference], system_instruction: str) -> str:
        parent = self._parent()
        agent_name = f"{parent}/dataAgents/{agent_id}"
        payload = {
            "name": agent_name,
            "description": f"Data agent for {len(refs)} table(s)",
            "data_analytics_agent": {
                "published_context": {
                    "datasourceReferences": {"bq": {"tableReferences": [ref.to_api() for ref in refs]}},
                    "systemInstruction": system_instruction,
                }
            },
        }
        try:
            response = await self._rest.request(
                "POST",
                f"{_BASE_URL}/{parent}/dataAgents",
                json=payload,
                params={"data_agent_id": agent_id},
            )
        except AgentProvisioningError as exc:
            if _is_conflict(exc):
                raise AgentConflictError(str(exc), agent_id=agent_id) from exc
            raise
        # Creation may answer with a long-running operation; the agent name is deterministic.
        name = response.get("name")
        if isinstance(name, str) and "/dataAgents/" in name and "/operations/" not in name:
            return name
        return agent_name

    async def get(self, agent_id: str) -> str:
        parent = self._parent()
        response = await self._rest.request("GET", f"{_BASE_URL}/{parent}/dataAgents/{agent_id}")
        name = response.get("name")
        if not isinstance(name, str) or not name:
            raise AgentProvisioningError(f"data agent {agent_id} returned no name", status_code=502)
        return name

    async def aclose(self) -> None:
        await self._rest.aclose()


def _is_conflict(exc: AgentProvisioningError) -> bool:
    # The API reports duplicates as 409, or as 400 with an "already exists" message.
    if exc.status_code == 409:
        return True
    return exc.status_code == 400 and "exist" in str(exc).lower()
