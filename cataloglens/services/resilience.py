from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, Hashable, Iterable, TypeVar

from redis.asyncio import Redis

from cataloglens.core.config import Settings, get_settings
from cataloglens.core.errors import IntegrationUnavailableError
from cataloglens.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

TransientException = (TimeoutError, OSError)


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None


async def get_resilience_redis() -> Redis | None:
    # Share breaker state across workers only when Redis is configured.
    settings = get_settings()
    if not settings.redis_url:
        return None
    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None
    global _redis_pool, _redis_loop
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    try:
        _redis_pool = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        _redis_loop = current_loop
    except Exception as exc:  # noqa: BLE001 - Redis might be unavailable in dev
        logger.warning("resilience_redis_unavailable", exc_info=exc)
        return None
    return _redis_pool


def _default_retryable(exc: Exception) -> bool:
    # Retry only transient network/timeout failures by default.
    if isinstance(exc, TransientException):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and status >= 500:
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.ext_call_timeout_ms,
        max_attempts=settings.ext_retry_max_attempts,
        backoff_ms=settings.ext_retry_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    # Retry helper with jittered backoff for transient failures only.
    policy = policy or default_retry_policy()
    retryable = retryable or _default_retryable
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            increment_counter("external_retries_total")
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            await asyncio.sleep(sleep_s)
            attempt += 1


CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int
    open_seconds: int
    # Calls admitted while half-open before the breaker refuses again.
    half_open_trials: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BreakerConfig":
        settings = settings or get_settings()
        return cls(
            failure_threshold=settings.cb_failure_threshold,
            open_seconds=settings.cb_open_seconds,
            half_open_trials=settings.cb_half_open_trials,
        )


@dataclass
class BreakerState:
    phase: str = CLOSED
    failures: int = 0
    opened_at: float | None = None
    trials: int = 0

    def to_redis(self) -> dict[str, str]:
        return {
            "phase": self.phase,
            "failures": str(self.failures),
            "opened_at": "" if self.opened_at is None else str(self.opened_at),
            "trials": str(self.trials),
        }

    @classmethod
    def from_redis(cls, raw: dict[str, str]) -> "BreakerState":
        opened_at = raw.get("opened_at")
        return cls(
            phase=raw.get("phase", CLOSED),
            failures=int(raw.get("failures") or 0),
            opened_at=float(opened_at) if opened_at else None,
            trials=int(raw.get("trials") or 0),
        )


class CircuitBreaker:
    """Consecutive-failure breaker guarding one scope of an integration.

    ``name`` keys the state, locally or in Redis when one is configured.
    ``integration`` is the label telemetry aggregates under, so breakers
    scoped to single resources of the same API still report together.
    A half-open breaker admits ``half_open_trials`` calls; one success
    closes it and one failure reopens it.
    """

    def __init__(
        self,
        name: str,
        *,
        integration: str | None = None,
        redis: Redis | None = None,
        config: BreakerConfig | None = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self.name = name
        self.integration = integration or name
        self._redis = redis
        self._config = config or BreakerConfig.from_settings()
        self._now = time_source or time.monotonic
        self._state = BreakerState()

    @property
    def redis_key(self) -> str:
        return f"{get_settings().cb_redis_prefix}:{self.name}"

    async def current(self) -> BreakerState:
        if self._redis is not None:
            raw = await self._redis.hgetall(self.redis_key)
            if raw:
                return BreakerState.from_redis(raw)
        return self._state

    async def _store(self, state: BreakerState) -> None:
        self._state = state
        if self._redis is not None:
            await self._redis.hset(self.redis_key, mapping=state.to_redis())
            await self._redis.expire(self.redis_key, max(self._config.open_seconds * 4, 60))

    def _enter(self, previous: BreakerState, phase: str) -> BreakerState:
        if previous.phase != phase:
            logger.warning("circuit_breaker_transition name=%s from=%s to=%s", self.name, previous.phase, phase)
            increment_counter(f"circuit_breaker_transition_total.{self.integration}.{phase}")
        return BreakerState(phase=phase, opened_at=self._now() if phase == OPEN else None)

    async def before_call(self) -> None:
        """Admit the call or raise IntegrationUnavailableError."""
        state = await self.current()
        if state.phase == OPEN:
            cooled = state.opened_at is not None and self._now() - state.opened_at >= self._config.open_seconds
            if not cooled:
                raise IntegrationUnavailableError(f"{self.name} is temporarily unavailable")
            state = self._enter(state, HALF_OPEN)
        if state.phase == HALF_OPEN:
            if state.trials >= self._config.half_open_trials:
                raise IntegrationUnavailableError(f"{self.name} is temporarily unavailable")
            state.trials += 1
            await self._store(state)

    async def record_success(self) -> None:
        state = await self.current()
        if state.phase != CLOSED or state.failures:
            await self._store(self._enter(state, CLOSED))

    async def record_failure(self) -> None:
        state = await self.current()
        if state.phase == HALF_OPEN or state.failures + 1 >= self._config.failure_threshold:
            await self._store(self._enter(state, OPEN))
            return
        await self._store(replace(state, failures=state.failures + 1))


def _is_client_error(exc: Exception) -> bool:
    # 4xx answers mean the integration is up; they must not trip the breaker.
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and 400 <= status < 500


async def guarded_call(
    breaker: CircuitBreaker,
    func: Callable[[], Awaitable[V]],
    *,
    policy: RetryPolicy | None = None,
) -> V:
    """Run one external call through the breaker, retry policy and call telemetry."""
    await breaker.before_call()
    start = time.monotonic()
    try:
        result = await retry_async(func, policy=policy)
    except Exception as exc:
        if _is_client_error(exc):
            await breaker.record_success()
        else:
            await breaker.record_failure()
        record_external_call(
            integration=breaker.integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=False,
        )
        raise
    await breaker.record_success()
    record_external_call(
        integration=breaker.integration,
        latency_ms=(time.monotonic() - start) * 1000.0,
        success=True,
    )
    return result


@dataclass(frozen=True)
class Settled(Generic[K, V]):
    # One fan-out task's outcome; exactly one of value/error is meaningful.
    key: K
    value: V | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(
    keys: Iterable[K],
    func: Callable[[K], Awaitable[V]],
    *,
    limit: int,
) -> list[Settled[K, V]]:
    """Run func for every key concurrently and settle each result independently.

    A failing key never cancels or fails its siblings.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _settle(key: K) -> Settled[K, V]:
        async with semaphore:
            try:
                return Settled(key=key, value=await func(key))
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - failure is carried on the Settled result
                return Settled(key=key, error=exc)

    return list(await asyncio.gather(*(_settle(key) for key in keys)))
