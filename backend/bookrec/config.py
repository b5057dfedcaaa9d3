"""Application configuration management."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000"

    # Catalog store
    database_url: str = "sqlite:///./bookrec.db"
    store_query_timeout_ms: int = 5000

    # Recommendation cache
    redis_url: str = "redis://localhost:6379/0"
    cache_backend: str = "redis"  # redis | memory
    recommendation_ttl_seconds: int = 7 * 24 * 60 * 60  # 7 days

    # OpenAI (quiz strategy only)
    openai_api_key: Optional[str] = None

    # Langfuse
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: str = "https://cloud.langfuse.com"

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
