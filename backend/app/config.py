"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - platform_fee_rate in [0, 1); rate limit and retry budgets are positive

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support (ADR: developer UX)
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - api_tokens maps bearer tokens to user ids: stand-in for the identity service,
      set as JSON in the API_TOKENS environment variable
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://propertychain:propertychain@db:5432/propertychain"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted Postgres provides postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Event transport
    event_transport_url: str = "ws://localhost:8000/api/v1/events"
    event_reconnect_delay_seconds: float = Field(5.0, gt=0)
    event_queue_size: int = Field(256, ge=1)

    # Admission control
    rate_limit_requests: int = Field(100, ge=1)
    rate_limit_window_ms: int = Field(60_000, ge=1)

    # Allocation
    platform_fee_rate: float = Field(0.02, ge=0, lt=1)
    reservation_max_attempts: int = Field(3, ge=1)

    # Identity
    api_tokens: dict[str, str] = {}

    # API
    cors_origins: list[str] = ["http://localhost:3000"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
