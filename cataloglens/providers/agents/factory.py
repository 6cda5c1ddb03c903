from __future__ import annotations

from cataloglens.core.config import get_settings
from cataloglens.providers.agents.base import DataAgentProvider
from cataloglens.providers.agents.fake import FakeDataAgentProvider
from cataloglens.providers.agents.gemini_data_agents import GeminiDataAgentProvider


def get_data_agent_provider() -> DataAgentProvider:
    settings = get_settings()
    provider = (settings.agent_provider or "google").lower()

    if provider == "fake":
        return FakeDataAgentProvider()
    return GeminiDataAgentProvider()
