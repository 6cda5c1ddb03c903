from __future__ import annotations

import asyncio

import pytest

from cataloglens.core.errors import AuthorityError, IntegrationUnavailableError
from cataloglens.services.resilience import (
    CircuitBreaker,
    BreakerConfig,
    RetryPolicy,
    gather_settled,
    guarded_call,
    retry_async,
)
from cataloglens.services.telemetry import external_call_summary, get_counter


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(
        flaky,
        policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1),
    )
    assert result == "ok"
    assert calls["count"] == 2
    assert get_counter("external_retries_total") == 1


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_client_errors() -> None:
    calls = {"count": 0}

    async def denied() -> str:
        calls["count"] += 1
        raise AuthorityError("forbidden", status_code=403)

    with pytest.raises(AuthorityError):
        await retry_async(denied, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_circuit_breaker_transitions() -> None:
    now = {"t": 0.0}

    def time_source() -> float:
        return now["t"]

    breaker = CircuitBreaker(
        "test.integration",
        redis=None,
        config=BreakerConfig(failure_threshold=2, open_seconds=10, half_open_trials=1),
        time_source=time_source,
    )
    await breaker.before_call()
    await breaker.record_failure()
    await breaker.record_failure()
    with pytest.raises(IntegrationUnavailableError):
        await breaker.before_call()

    now["t"] = 11.0
    await breaker.before_call()
    await breaker.record_success()
    await breaker.before_call()


@pytest.mark.asyncio
async def test_guarded_call_client_errors_keep_breaker_closed() -> None:
    breaker = CircuitBreaker(
        "test.client_errors",
        config=BreakerConfig(failure_threshold=1, open_seconds=10, half_open_trials=1),
    )
    policy = RetryPolicy(timeout_ms=100, max_attempts=1, backoff_ms=0)

    async def not_found() -> None:
        raise AuthorityError("missing", status_code=404)

    for _ in range(3):
        with pytest.raises(AuthorityError):
            await guarded_call(breaker, not_found, policy=policy)
    await breaker.before_call()
    assert external_call_summary()["test.client_errors"]["failures"] == 3


@pytest.mark.asyncio
async def test_gather_settled_isolates_failures_and_bounds_concurrency() -> None:
    active = {"now": 0, "peak": 0}

    async def work(key: int) -> int:
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0.001)
        active["now"] -= 1
        if key == 3:
            raise ValueError("bad key")
        return key * 10

    settled = await gather_settled(range(6), work, limit=2)

    assert [result.key for result in settled] == list(range(6))
    assert [result.value for result in settled if result.ok] == [0, 10, 20, 40, 50]
    assert isinstance(settled[3].error, ValueError)
    assert active["peak"] <= 2


@pytest.mark.asyncio
async def test_scoped_breakers_report_under_their_integration() -> None:
    config = BreakerConfig(failure_threshold=1, open_seconds=10, half_open_trials=1)
    broken = CircuitBreaker("test.scoped:a", integration="test.scoped", config=config)
    healthy = CircuitBreaker("test.scoped:b", integration="test.scoped", config=config)
    policy = RetryPolicy(timeout_ms=100, max_attempts=1, backoff_ms=0)

    async def down() -> None:
        raise ConnectionError("down")

    async def up() -> str:
        return "ok"

    with pytest.raises(ConnectionError):
        await guarded_call(broken, down, policy=policy)
    with pytest.raises(IntegrationUnavailableError):
        await broken.before_call()
    assert await guarded_call(healthy, up, policy=policy) == "ok"

    summary = external_call_summary()["test.scoped"]
    assert summary["calls"] == 2
    assert summary["failures"] == 1
    assert get_counter("circuit_breaker_transition_total.test.scoped.open") == 1
