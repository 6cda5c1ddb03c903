from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Sequence, TypeVar

from cataloglens.core.config import Settings, get_settings
from cataloglens.core.errors import AgentConflictError, CatalogUnavailableError
from cataloglens.domain.access import AgentHandle
from cataloglens.domain.refs import DatasetKey, TableReference
from cataloglens.domain.relationships import TableSchema
from cataloglens.providers.agents.base import DataAgentProvider
from cataloglens.providers.authority.base import Binding, IamAuthority
from cataloglens.providers.catalog.base import CatalogProvider, SearchPage
from cataloglens.services.keys import agent_id_for, derive_cache_key
from cataloglens.services.resilience import (
    BreakerConfig,
    CircuitBreaker,
    RetryPolicy,
    gather_settled,
    get_resilience_redis,
    guarded_call,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Any of these on a project or dataset lets a principal read table data.
READER_OR_ABOVE_ROLES = frozenset(
    {
        "roles/owner",
        "roles/editor",
        "roles/viewer",
        "roles/bigquery.admin",
        "roles/bigquery.dataOwner",
        "roles/bigquery.dataEditor",
        "roles/bigquery.dataViewer",
    }
)
ELEVATED_PROJECT_ROLES = frozenset({"roles/owner", "roles/editor"})
PUBLIC_MEMBERS = frozenset({"allUsers", "allAuthenticatedUsers"})

INTEGRATION_PROJECT_IAM = "authority.project_iam"
INTEGRATION_DATASET_IAM = "authority.dataset_iam"
INTEGRATION_CATALOG_SEARCH = "catalog.search"
INTEGRATION_CATALOG_SCHEMA = "catalog.schema"
INTEGRATION_AGENTS = "agents.data_agents"


def iam_member(principal: str) -> str:
    # Principals arrive as bare emails or already-typed IAM members ("group:...").
    return principal if ":" in principal else f"user:{principal}"


def bindings_grant(bindings: Iterable[Binding], principal: str, roles: Iterable[str] | None) -> bool:
    """True when principal holds one of roles (any role when roles is None)."""
    member = iam_member(principal).lower()
    role_set = None if roles is None else set(roles)
    for binding in bindings:
        if role_set is not None and binding.get("role") not in role_set:
            continue
        for candidate in binding.get("members") or []:
            if candidate in PUBLIC_MEMBERS or str(candidate).lower() == member:
                return True
    return False


class AuthorityGateway:
    """Single seam between the core services and remote IAM/catalog/agent APIs.

    Every call runs through a circuit breaker and the shared retry policy.
    Membership and schema calls are scoped to the resource they touch;
    search and agent calls share one breaker per integration. Membership
    checks fail closed; schema and agent calls degrade to partial or empty
    results. Only catalog search raises.
    """

    def __init__(
        self,
        authority: IamAuthority,
        catalog: CatalogProvider,
        agents: DataAgentProvider,
        *,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._authority = authority
        self._catalog = catalog
        self._agents = agents
        self._settings = settings or get_settings()
        self._retry_policy = retry_policy
        self._breakers: dict[str, CircuitBreaker] = {}

    async def _breaker(self, integration: str, scope: str | None) -> CircuitBreaker:
        # A scoped breaker trips for its own dataset or table only.
        name = integration if scope is None else f"{integration}:{scope}"
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                integration=integration,
                redis=await get_resilience_redis(),
                config=BreakerConfig.from_settings(self._settings),
            )
            self._breakers[name] = breaker
        return breaker

    async def _call(
        self, integration: str, func: Callable[[], Awaitable[T]], *, scope: str | None = None
    ) -> T:
        breaker = await self._breaker(integration, scope)
        return await guarded_call(breaker, func, policy=self._retry_policy)

    async def check_project_membership(self, principal: str, project_id: str, role_set: Iterable[str]) -> bool:
        try:
            bindings = await self._call(
                INTEGRATION_PROJECT_IAM,
                lambda: self._authority.get_project_iam_policy(project_id),
                scope=project_id,
            )
        except Exception as exc:  # noqa: BLE001 - fail closed on any authority failure
            logger.warning(
                "project_membership_check_failed project=%s principal=%s", project_id, principal, exc_info=exc
            )
            return False
        return bindings_grant(bindings, principal, role_set)

    async def _dataset_bindings(self, dataset_key: DatasetKey) -> list[Binding]:
        return await self._call(
            INTEGRATION_DATASET_IAM,
            lambda: self._authority.get_resource_iam_policy(dataset_key),
            scope=dataset_key.canonical,
        )

    async def check_resource_membership(self, principal: str, dataset_key: DatasetKey) -> bool:
        try:
            bindings = await self._dataset_bindings(dataset_key)
        except Exception as exc:  # noqa: BLE001 - fail closed on any authority failure
            logger.warning(
                "resource_membership_check_failed dataset=%s principal=%s",
                dataset_key.canonical,
                principal,
                exc_info=exc,
            )
            return False
        return bindings_grant(bindings, principal, READER_OR_ABOVE_ROLES)

    async def check_resource_memberships(
        self, principal: str, dataset_keys: Iterable[DatasetKey]
    ) -> dict[DatasetKey, bool]:
        """Check every unique dataset concurrently; a failed lookup denies that dataset only."""
        unique = sorted(set(dataset_keys))
        settled = await gather_settled(
            unique,
            self._dataset_bindings,
            limit=self._settings.authority_max_concurrency,
        )
        verdicts: dict[DatasetKey, bool] = {}
        for result in settled:
            if not result.ok:
                logger.warning(
                    "resource_membership_check_failed dataset=%s principal=%s error=%s",
                    result.key.canonical,
                    principal,
                    result.error,
                )
                verdicts[result.key] = False
                continue
            verdicts[result.key] = bindings_grant(result.value or [], principal, READER_OR_ABOVE_ROLES)
        return verdicts

    async def fetch_schema(self, dataset_key: DatasetKey) -> list[TableSchema]:
        try:
            table_names = await self._call(
                INTEGRATION_CATALOG_SCHEMA,
                lambda: self._catalog.list_tables(dataset_key),
                scope=dataset_key.canonical,
            )
        except Exception as exc:  # noqa: BLE001 - no tables means no inferred relationships
            logger.warning("schema_list_tables_failed dataset=%s", dataset_key.canonical, exc_info=exc)
            return []

        async def _fetch(table_name: str) -> TableSchema:
            columns = await self._call(
                INTEGRATION_CATALOG_SCHEMA,
                lambda: self._catalog.get_table_schema(dataset_key.project_id, dataset_key.dataset_id, table_name),
                scope=f"{dataset_key.canonical}.{table_name}",
            )
            return TableSchema(name=table_name, columns=tuple(columns))

        settled = await gather_settled(
            table_names,
            _fetch,
            limit=self._settings.schema_fetch_max_concurrency,
        )
        tables: list[TableSchema] = []
        for result in settled:
            if result.ok and result.value is not None:
                tables.append(result.value)
            else:
                logger.warning(
                    "schema_fetch_failed dataset=%s table=%s error=%s",
                    dataset_key.canonical,
                    result.key,
                    result.error,
                )
        return tables

    async def create_or_fetch_agent(
        self, refs: Sequence[TableReference], system_instruction: str
    ) -> AgentHandle | None:
        unique_refs = sorted(set(refs))
        cache_key = derive_cache_key(unique_refs)
        agent_id = agent_id_for(cache_key)
        try:
            name = await self._call(
                INTEGRATION_AGENTS,
                lambda: self._agents.create(agent_id, unique_refs, system_instruction),
            )
            logger.info("data_agent_created agent_id=%s name=%s", agent_id, name)
        except AgentConflictError:
            try:
                name = await self._call(INTEGRATION_AGENTS, lambda: self._agents.get(agent_id))
            except Exception as exc:  # noqa: BLE001 - caller falls back to an inline context
                logger.warning("data_agent_fetch_failed agent_id=%s", agent_id, exc_info=exc)
                return None
            logger.info("data_agent_reused agent_id=%s name=%s", agent_id, name)
        except Exception as exc:  # noqa: BLE001 - caller falls back to an inline context
            logger.warning("data_agent_create_failed agent_id=%s", agent_id, exc_info=exc)
            return None
        return AgentHandle(cache_key=cache_key, external_resource_name=name)

    async def search_entries(self, query: str, *, page_size: int, page_token: str | None = None) -> SearchPage:
        try:
            return await self._call(
                INTEGRATION_CATALOG_SEARCH,
                lambda: self._catalog.search_entries(query, page_size=page_size, page_token=page_token),
            )
        except Exception as exc:
            logger.error("catalog_search_failed query=%r", query, exc_info=exc)
            raise CatalogUnavailableError("Catalog search is unavailable") from exc

    async def aclose(self) -> None:
        for provider in (self._authority, self._catalog, self._agents):
            closer: Any = getattr(provider, "aclose", None)
            if closer is not None:
                await closer()
