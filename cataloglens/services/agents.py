from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from cataloglens.domain.access import AgentHandle
from cataloglens.domain.refs import TableReference
from cataloglens.services.gateway import AuthorityGateway
from cataloglens.services.keys import derive_cache_key
from cataloglens.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


class AgentCacheStore(Protocol):
    async def get(self, cache_key: str) -> AgentHandle | None:
        ...

    async def set(self, cache_key: str, handle: AgentHandle) -> None:
        ...


@dataclass
class InMemoryAgentCacheStore:
    # Process lifetime, unbounded.
    handles: dict[str, AgentHandle] = field(default_factory=dict)

    async def get(self, cache_key: str) -> AgentHandle | None:
        return self.handles.get(cache_key)

    async def set(self, cache_key: str, handle: AgentHandle) -> None:
        self.handles[cache_key] = handle

    def clear(self) -> None:
        self.handles.clear()


@dataclass(frozen=True)
class AgentLookup:
    cache_key: str
    handle: AgentHandle | None
    # True when the handle came from the store without a remote call.
    cached: bool


class AgentDedupCache:
    """Reuse one remote data agent per distinct set of table references.

    Only successful provisioning is stored; a ``None`` result means the
    caller should fall back to an inline context and a later call retries.
    Without ``single_flight`` two concurrent misses for the same key may
    both reach the gateway; the remote conflict-then-get path makes that
    safe. With it, misses are serialized per key.
    """

    def __init__(
        self,
        gateway: AuthorityGateway,
        store: AgentCacheStore | None = None,
        *,
        single_flight: bool = False,
    ) -> None:
        self._gateway = gateway
        self._store: AgentCacheStore = store if store is not None else InMemoryAgentCacheStore()
        self._single_flight = single_flight
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, cache_key: str) -> asyncio.Lock:
        lock = self._locks.get(cache_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[cache_key] = lock
        return lock

    async def _provision(
        self, cache_key: str, refs: Sequence[TableReference], system_instruction: str
    ) -> AgentLookup:
        handle = await self._gateway.create_or_fetch_agent(refs, system_instruction)
        if handle is None:
            increment_counter("agent_cache_provision_failed_total")
            logger.warning("agent_cache_provision_failed cache_key=%s refs=%d", cache_key, len(refs))
            return AgentLookup(cache_key=cache_key, handle=None, cached=False)
        await self._store.set(cache_key, handle)
        logger.info(
            "agent_cache_stored cache_key=%s name=%s", cache_key, handle.external_resource_name
        )
        return AgentLookup(cache_key=cache_key, handle=handle, cached=False)

    async def lookup(self, refs: Sequence[TableReference], system_instruction: str) -> AgentLookup:
        cache_key = derive_cache_key(refs)
        hit = await self._store.get(cache_key)
        if hit is not None:
            increment_counter("agent_cache_hit_total")
            logger.debug("agent_cache_hit cache_key=%s", cache_key)
            return AgentLookup(cache_key=cache_key, handle=hit, cached=True)

        increment_counter("agent_cache_miss_total")
        if not self._single_flight:
            return await self._provision(cache_key, refs, system_instruction)

        async with self._lock_for(cache_key):
            # Another waiter may have filled the slot while this one queued.
            hit = await self._store.get(cache_key)
            if hit is not None:
                return AgentLookup(cache_key=cache_key, handle=hit, cached=True)
            result = await self._provision(cache_key, refs, system_instruction)
            if result.handle is not None:
                # Later callers hit the store before locking; queued waiters keep their reference.
                self._locks.pop(cache_key, None)
            return result

    async def get_or_create(
        self, refs: Sequence[TableReference], system_instruction: str
    ) -> AgentHandle | None:
        return (await self.lookup(refs, system_instruction)).handle
