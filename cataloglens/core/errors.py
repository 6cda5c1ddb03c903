from __future__ import annotations


class CatalogLensError(Exception):
    """Base error for cataloglens."""

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message)
        # HTTP status of the failed remote call, when there was one.
        self.status_code = status_code


class ProviderConfigError(CatalogLensError):
    """Missing or invalid provider configuration."""


class IntegrationUnavailableError(CatalogLensError):
    """Circuit breaker is open for an external integration."""


class AuthorityError(CatalogLensError):
    """IAM authority request failure."""


class AuthorityAuthError(AuthorityError):
    """IAM authority authentication/authorization failure."""


class AuthorityTimeoutError(AuthorityError):
    """IAM authority request timed out."""


class CatalogError(CatalogLensError):
    """Catalog or schema provider failure."""


class CatalogUnavailableError(CatalogError):
    """Catalog search could not be served."""


class AgentProvisioningError(CatalogLensError):
    """Data agent create/get failure."""


class AgentConflictError(AgentProvisioningError):
    """Data agent already exists for the requested id."""

    def __init__(self, message: str, agent_id: str | None = None) -> None:
        super().__init__(message, status_code=409)
        self.agent_id = agent_id


class RelationshipStoreError(CatalogLensError):
    """Relationship cache persistence failure."""


class AdminRoleStoreError(CatalogLensError):
    """Admin role store read/write failure."""
