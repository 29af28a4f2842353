"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProductCredentials(BaseModel):
    """Credential bundle for one Amplitude project."""

    name: str = Field(..., description="Display name of the product")
    project_id: str = Field(..., description="Amplitude project identifier")
    api_key: str = Field(..., description="Amplitude API key")
    secret_key: str = Field(..., description="Amplitude secret key")
    org_id: Optional[str] = Field(default=None, description="Amplitude org id")

    @property
    def slug(self) -> str:
        """URL-safe product identifier (e.g. 'Axe DevTools' -> 'axe-devtools')."""
        return "-".join(self.name.lower().split())


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Amplitude API
    amplitude_base_url: str = Field(
        default="https://amplitude.com/api/2",
        description="Amplitude Dashboard REST API base URL",
    )
    amplitude_timeout_s: float = Field(
        default=30.0, description="Per-request HTTP timeout in seconds"
    )
    amplitude_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt on 429 or network failure",
    )
    amplitude_base_delay_s: float = Field(
        default=1.0,
        gt=0.0,
        description="Base backoff delay; attempt n waits base * 2^n seconds",
    )
    amplitude_products: list[ProductCredentials] = Field(
        default_factory=list,
        description="JSON list of {name, project_id, api_key, secret_key, org_id}",
    )

    # Query scheduling
    project_query_concurrency: int = Field(
        default=1,
        ge=1,
        description="Concurrent upstream queries allowed per Amplitude project",
    )

    # Cache TTLs
    usage_cache_ttl_minutes: float = Field(
        default=15, gt=0, description="TTL for summaries and rolling-window metrics"
    )
    quarterly_cache_ttl_minutes: float = Field(
        default=30, gt=0, description="TTL for quarterly rollups"
    )
    taxonomy_cache_ttl_minutes: float = Field(
        default=60, gt=0, description="TTL for user property listings"
    )
    cache_sweep_interval_s: float = Field(
        default=300.0,
        ge=0.0,
        description="Seconds between expired-entry sweeps (0 disables the task)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
