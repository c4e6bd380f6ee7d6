"""Client configuration using Pydantic Settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from FREEAGENT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FREEAGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False

    # API
    api_base_url: str = "https://api.freeagent.com/v2/"
    sandbox_api_base_url: str = "https://api.sandbox.freeagent.com/v2/"
    use_sandbox: bool = False
    access_token: str = ""
    user_agent: str = "freeagent-client/0.1"

    # Transport
    request_timeout: float = 30.0  # seconds
    max_retries: int = 3
    initial_retry_delay: float = 1.0  # seconds
    max_retry_delay: float = 30.0  # seconds

    # Pagination - FreeAgent caps per_page at 100
    page_size: int = 100

    # Cache
    cache_backend: Literal["memory", "redis", "none"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_key_prefix: str = "freeagent:"
    business_cache_ttl: int = 300  # 5 minutes, sliding
    reference_cache_ttl: int = 86400  # 24 hours, fixed
    report_cache_ttl: int = 1800  # 30 minutes, fixed

    # Reporting
    hours_per_day: int = 8

    @property
    def base_url(self) -> str:
        """Base URL for the selected environment."""
        return self.sandbox_api_base_url if self.use_sandbox else self.api_base_url


# Create settings instance
settings = Settings()
