from __future__ import annotations

from collections import Counter
from typing import Sequence

from cataloglens.core.errors import AgentConflictError, AgentProvisioningError
from cataloglens.domain.refs import TableReference


class FakeDataAgentProvider:
    def __init__(
        self,
        *,
        existing: set[str] | None = None,
        fail_create: bool = False,
        fail_get: bool = False,
        parent: str = "projects/fake/locations/local",
    ) -> None:
        # Agent ids that already exist remotely; create() answers with a conflict for them.
        self.existing = existing if existing is not None else set()
        self.fail_create = fail_create
        self.fail_get = fail_get
        self.parent = parent
        self.calls: Counter[str] = Counter()

    async def create(self, agent_id: str, refs: Sequence[TableReference], system_instruction: str) -> str:
        self.calls["create"] += 1
        if self.fail_create:
            raise AgentProvisioningError("create failed", status_code=503)
        if agent_id in self.existing:
            raise AgentConflictError(f"agent {agent_id} already exists", agent_id=agent_id)
        self.existing.add(agent_id)
        return f"{self.parent}/dataAgents/{agent_id}"

    async def get(self, agent_id: str) -> str:
        self.calls["get"] += 1
        if self.fail_get or agent_id not in self.existing:
            raise AgentProvisioningError(f"agent {agent_id} not found", status_code=404)
        return f"{self.parent}/dataAgents/{agent_id}"

    async def aclose(self) -> None:
        return None
