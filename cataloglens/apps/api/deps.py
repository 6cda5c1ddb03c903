from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel

from cataloglens.core.config import Settings, get_settings
from cataloglens.persistence.db import SessionLocal
from cataloglens.providers.agents.factory import get_data_agent_provider
from cataloglens.providers.authority.factory import get_iam_authority
from cataloglens.providers.catalog.factory import get_catalog_provider
from cataloglens.services.admin_roles import (
    AdminRoleResolver,
    AdminRoleStore,
    InMemoryAdminRoleStore,
    SqlAdminRoleStore,
)
from cataloglens.services.agents import AgentDedupCache
from cataloglens.services.annotation import AccessAnnotator
from cataloglens.services.gateway import AuthorityGateway
from cataloglens.services.relationships import (
    InMemoryRelationshipStore,
    RelationshipService,
    RelationshipStore,
    SqlRelationshipStore,
)


logger = logging.getLogger(__name__)


class Principal(BaseModel):
    email: str
    # Carried for downstream calls; not validated here.
    access_token: str | None = None


@dataclass
class Services:
    gateway: AuthorityGateway
    admin_store: AdminRoleStore
    admin_resolver: AdminRoleResolver
    annotator: AccessAnnotator
    relationships: RelationshipService
    agents: AgentDedupCache

    async def aclose(self) -> None:
        await self.gateway.aclose()


def build_services(
    settings: Settings | None = None,
    *,
    gateway: AuthorityGateway | None = None,
    relationship_store: RelationshipStore | None = None,
    admin_store: AdminRoleStore | None = None,
) -> Services:
    settings = settings or get_settings()
    if gateway is None:
        gateway = AuthorityGateway(
            get_iam_authority(),
            get_catalog_provider(),
            get_data_agent_provider(),
            settings=settings,
        )
    use_memory = settings.relationship_store.lower() == "memory"
    if relationship_store is None:
        relationship_store = InMemoryRelationshipStore() if use_memory else SqlRelationshipStore(SessionLocal)
    if admin_store is None:
        admin_store = InMemoryAdminRoleStore() if use_memory else SqlAdminRoleStore(SessionLocal)
    admin_resolver = AdminRoleResolver(admin_store, gateway, settings=settings)
    return Services(
        gateway=gateway,
        admin_store=admin_store,
        admin_resolver=admin_resolver,
        annotator=AccessAnnotator(gateway, admin_resolver, settings=settings),
        relationships=RelationshipService(gateway, relationship_store, settings=settings),
        agents=AgentDedupCache(gateway, single_flight=settings.agent_cache_single_flight),
    )


_services: Services | None = None


def get_services() -> Services:
    # One graph per process so the agent cache and breakers are shared across requests.
    global _services
    if _services is None:
        _services = build_services()
        logger.info("services_initialized store=%s", get_settings().relationship_store)
    return _services


async def reset_services() -> None:
    global _services
    if _services is not None:
        await _services.aclose()
    _services = None


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_principal(
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    authorization: str | None = Header(default=None),
) -> Principal:
    email = (x_user_email or "").strip()
    if not email:
        raise _auth_error("X-User-Email header is required")
    return Principal(email=email, access_token=_parse_bearer_token(authorization))


async def require_admin(
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> Principal:
    if not await services.admin_resolver.is_admin(principal.email):
        logger.info("admin_access_denied email=%s", principal.email)
        raise forbidden_error("Admin role required for this operation")
    return principal


async def require_super_admin(
    principal: Principal = Depends(get_current_principal),
    services: Services = Depends(get_services),
) -> Principal:
    if not await services.admin_resolver.is_super_admin(principal.email):
        logger.info("super_admin_access_denied email=%s", principal.email)
        raise forbidden_error("Super admin role required for this operation")
    return principal
