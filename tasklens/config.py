"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Providers (read by LiteLLM from the environment as well)
    anthropic_api_key: str | None = Field(default=None)
    openai_api_key: str | None = Field(default=None)

    # Vision extraction
    vision_model: str = Field(default="anthropic/claude-3-7-sonnet-20250219")
    vision_max_tokens: int = Field(default=1200)
    vision_temperature: float = Field(default=0.0)
    llm_timeout_seconds: float = Field(default=60.0)

    # Agent loop
    agent_model: str = Field(default="anthropic/claude-3-7-sonnet-20250219")
    agent_max_steps: int = Field(default=3, ge=1)
    agent_max_tokens: int = Field(default=2048)
    max_extracted_tasks: int = Field(default=8)

    # Image transport
    allowed_image_media_types: list[str] = Field(
        default=["image/jpeg", "image/png", "image/gif", "image/webp"]
    )
    max_image_bytes: int = Field(default=20 * 1024 * 1024)

    # Blob storage
    blob_store_backend: Literal["memory", "local"] = Field(default="memory")
    blob_store_root: str = Field(default="blob_data")

    # Conversation threads
    thread_store_backend: Literal["memory", "redis"] = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    thread_key_prefix: str = Field(default="tasklens:threads:")
    # Sliding expiry for Redis thread keys; 0 keeps threads forever
    thread_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=0)
    # How long deltas of a finished or aborted stream stay readable
    stream_retention_seconds: int = Field(default=300, ge=1)

    # Task store service
    task_store_url: str = Field(default="http://localhost:3000")
    task_store_internal_secret: str = Field(default="")
    task_store_timeout_seconds: float = Field(default=15.0)

    # API Settings
    internal_auth_secret: str = Field(default="")
    cors_origins: list[str] = Field(default=["http://localhost:5173", "http://localhost:3000"])

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
