from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "cataloglens"
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Relationship cache and admin roles live here; sqlite keeps local runs dependency-free.
    database_url: str = "sqlite+aiosqlite:///./cataloglens.db"
    # Pool sizing only applies to server databases (asyncpg).
    api_db_pool_size: int = 5
    api_db_max_overflow: int = 5

    # Optional Redis for sharing circuit breaker state across workers.
    redis_url: str | None = None
    cb_redis_prefix: str = "cataloglens:cb"

    # Home project used for project-tier checks and the IAM admin fallback.
    google_cloud_project_id: str | None = None
    # Location for Gemini data agents.
    google_cloud_location: str = "europe-west1"
    # Location used for Dataplex catalog search.
    dataplex_location: str = "global"
    # Env-configured super admin, checked after the role store.
    super_admin_email: str | None = None

    # Provider selection: google for real APIs, fake for dev/test.
    authority_provider: str = "google"
    catalog_provider: str = "google"
    agent_provider: str = "google"

    # Centralize external call timeouts for integrations (ms).
    ext_call_timeout_ms: int = 8000
    # Retry transient integration failures for a bounded number of attempts.
    ext_retry_max_attempts: int = 2
    # Base backoff between retry attempts (ms), jittered per call.
    ext_retry_backoff_ms: int = 200
    # Circuit breaker thresholds for external integrations.
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    cb_half_open_trials: int = 2

    # Cap concurrent fan-out calls within one batch.
    authority_max_concurrency: int = 16
    schema_fetch_max_concurrency: int = 8

    # Inferred relationships older than this are recomputed; 0 disables expiry.
    relationship_cache_ttl_hours: int = 24
    # Backend for the relationship cache and admin roles: sql persists, memory is for throwaway runs.
    relationship_store: str = "sql"

    # Serialize concurrent agent provisioning per cache key when enabled.
    agent_cache_single_flight: bool = False

    # Catalog query used to discover tables for the accessible-tables listing.
    accessible_tables_query: str = "system=BIGQUERY type=TABLE"
    accessible_tables_max_pages: int = 5
    search_default_page_size: int = 20
    search_max_page_size: int = 100


@lru_cache
def get_settings() -> Settings:
    return Settings()
