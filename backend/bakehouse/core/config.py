"""Application configuration using pydantic-settings.

Every tunable is read from the environment (or `.env`) through `settings`;
nothing else in the package calls os.getenv().
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./data/bakehouse.db"
    sqlite_busy_timeout: int = 30  # seconds a writer waits for the SQLite lock

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # ==========================================================================
    # Transfer requests & approval
    # ==========================================================================
    default_requester: str = "mobile user"
    request_list_limit: int = 200
    # Reject new requests that exceed available-to-promise at creation time.
    # Off by default: a request records intent, approval does the real check.
    reject_requests_over_availability: bool = False
    approval_max_retries: int = 3
    approval_retry_backoff_ms: int = 50

    @field_validator("approval_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("approval_max_retries must be at least 1")
        return v

    @field_validator("request_list_limit")
    @classmethod
    def validate_list_limit(cls, v: int) -> int:
        if v < 1 or v > 1000:
            raise ValueError("request_list_limit must be between 1 and 1000")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list, filtering localhost in production."""
        if self.cors_origins == "*":
            return ["*"]

        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

        # Filter out localhost origins in production mode
        if not self.debug:
            localhost_patterns = ["localhost", "127.0.0.1", "0.0.0.0"]
            origins = [o for o in origins if not any(p in o for p in localhost_patterns)]

        return origins

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
