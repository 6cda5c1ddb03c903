from __future__ import annotations

from typing import Protocol, Sequence

from cataloglens.domain.refs import TableReference


class DataAgentProvider(Protocol):
    # Both return the agent's full resource name.
    async def create(self, agent_id: str, refs: Sequence[TableReference], system_instruction: str) -> str:
        ...

    async def get(self, agent_id: str) -> str:
        ...
