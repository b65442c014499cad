"""Application configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "order-sequence-tagger"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    api_workers: int = 1

    # -------------------------------------------------------------------------
    # Shopify Admin API
    # -------------------------------------------------------------------------
    shop: str = ""
    access_token: str = ""
    api_version: str = "2023-07"
    shopify_api_timeout: float = 30.0
    shopify_page_size: int = Field(default=250, ge=1, le=250)

    @field_validator("shop", mode="before")
    @classmethod
    def normalize_shop(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().removeprefix("https://").rstrip("/")
        return v

    @property
    def shopify_base_url(self) -> str:
        """Construct the Admin REST API base URL for the configured shop."""
        host = self.shop if "." in self.shop else f"{self.shop}.myshopify.com"
        return f"https://{host}/admin/api/{self.api_version}/"

    @property
    def shopify_configured(self) -> bool:
        return bool(self.shop and self.access_token)

    # -------------------------------------------------------------------------
    # Rate Limiting
    # -------------------------------------------------------------------------
    max_concurrent_requests: int = Field(default=2, ge=1)
    min_request_interval_ms: int = Field(default=500, ge=0)
    max_request_attempts: int = Field(default=4, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_backoff: Literal["exponential", "linear"] = "exponential"
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)

    # -------------------------------------------------------------------------
    # Tagging Run Settings
    # -------------------------------------------------------------------------
    scope_strategy: Literal["customer", "order"] = "customer"
    counting_strategy: Literal["query", "position"] = "query"
    customer_batch_size: int = Field(default=50, ge=1)
    customer_concurrency: int = Field(default=1, ge=1)
    order_batch_size: int = Field(default=5, ge=1)
    skip_unchanged: bool = True
    # Record a customer whose order listing fails instead of aborting the run
    isolate_customer_failures: bool = False

    # -------------------------------------------------------------------------
    # Redis / Celery
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
