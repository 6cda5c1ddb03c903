from __future__ import annotations

import pytest

from cataloglens.core.config import get_settings
from cataloglens.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def isolate_process_state(monkeypatch) -> None:
    # Breaker state must stay local and counters must start empty for every test.
    monkeypatch.delenv("REDIS_URL", raising=False)
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()
