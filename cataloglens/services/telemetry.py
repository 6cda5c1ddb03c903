from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture external call latency and outcomes.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def external_call_summary(window_s: int = 300) -> dict[str, dict[str, float]]:
    # Per-integration call counts and error rates for the health endpoint.
    cutoff = time.time() - window_s
    summary: dict[str, dict[str, float]] = {}
    for sample in _external_samples:
        if sample.ts < cutoff:
            continue
        bucket = summary.setdefault(sample.integration, {"calls": 0, "failures": 0, "error_rate": 0.0})
        bucket["calls"] += 1
        if not sample.success:
            bucket["failures"] += 1
    for bucket in summary.values():
        bucket["error_rate"] = bucket["failures"] / bucket["calls"] if bucket["calls"] else 0.0
    return summary


def reset_telemetry() -> None:
    # Allow tests to start from empty counters.
    _external_samples.clear()
    _counters.clear()
