from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


Tier = Literal["admin", "project", "dataset"]


@dataclass(frozen=True)
class PermissionDecision:
    # Request-scoped; never persisted or reused across requests.
    principal: str
    resource_key: str | None
    granted: bool
    tier: Tier


@dataclass(frozen=True)
class AgentHandle:
    cache_key: str
    external_resource_name: str
