"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class CounterBackend(StrEnum):
    REDIS = "redis"
    MEMORY = "memory"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Database URL is assembled from individual components to match
    the official PostgreSQL Docker image environment variables.
    Tenancy knobs are grouped under the ``tenancy_`` prefix.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"
    # --- CORS ---
    cors_allowed_origins: list[str] = []
    cors_allow_credentials: bool = False
    cors_allowed_methods: list[str] = ["GET", "POST", "PATCH"]
    cors_allowed_headers: list[str] = ["Content-Type", "X-API-Key", "X-City"]
    cors_expose_headers: list[str] = [
        "X-Tenant-City",
        "X-Tenant-Timezone",
        "X-Tenant-Key",
    ]

    # --- PostgreSQL ---
    postgres_user: str = "civic_portal"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "civic_portal"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Assemble database URL from components.

        Uses psycopg v3 driver which supports both sync (create_engine)
        and async (create_async_engine) modes natively.
        """
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"

    # --- Worker ---
    worker_max_jobs: int = 10
    worker_job_timeout: int = 300
    worker_max_tries: int = 3

    # --- Tenancy: resolution ---
    tenancy_default_city_slug: str = "tijucas-sc"
    tenancy_allow_header_override: bool = True
    tenancy_strict_mode: bool = False
    tenancy_city_header: str = "X-City"
    tenancy_trusted_hosts: list[str] = [
        "etijucas.com.br",
        "www.etijucas.com.br",
        "*.cidadeconectada.app",
        "localhost",
        "127.0.0.1",
    ]
    tenancy_domain_map_ttl: int = 3600
    tenancy_default_timezone: str = "America/Sao_Paulo"

    # --- Tenancy: admin switcher ---
    tenancy_switch_query_param: str = "tenant_city"
    tenancy_override_ttl_seconds: int = 12 * 3600

    # --- Tenancy: observability ---
    # Escalation policy is tunable, not a contract.
    tenancy_mismatch_alerts_enabled: bool = True
    tenancy_mismatch_window_seconds: int = 300
    tenancy_mismatch_alert_threshold: int = 5
    # redis: shared by all workers; memory: per process (tests, single worker)
    tenancy_mismatch_counter: CounterBackend = CounterBackend.REDIS

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from civic_portal.config import get_settings
        settings = get_settings()

    Or for dependency injection in FastAPI::

        @app.get("/")
        def root(settings: Settings = Depends(get_settings)):
            ...
    """
    return Settings()


settings = get_settings()
