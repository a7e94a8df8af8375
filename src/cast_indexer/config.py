"""Configuration management."""
import os
import json
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = Field(
        default="sqlite:///./cast_indexer.db",
        description="SQLAlchemy database URL"
    )

    # Upstream feed API
    feed_base_url: str = Field(default="https://api.warpcast.com")
    feed_path: str = Field(default="/v2/recent-casts")
    feed_api_token: str = Field(
        default="",
        description="Optional bearer token for the feed API"
    )
    feed_page_size: int = Field(default=1000, ge=1)
    feed_timeout_seconds: float = Field(default=60.0)
    request_retry_attempts: int = Field(default=3, ge=1)
    spam_username_markers: list[str] = Field(default_factory=lambda: ["__tt_"])

    # Writer settings
    cast_chunk_size: int = Field(default=1000, ge=1)
    tag_chunk_size: int = Field(default=1000, ge=1)
    vocabulary_page_size: int = Field(default=1000, ge=1)

    # Run settings
    slow_run_threshold_seconds: float = Field(default=60.0)
    index_limit: int = Field(default=10_000)
    index_interval_seconds: int = Field(default=60, ge=1)
    log_level: str = Field(default="INFO")

    # Tag suggester
    tag_suggester: str = Field(default="none", description="none or openai")
    openai_api_key: str = Field(default="")
    openai_model: str = Field(default="gpt-4o-mini")
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    openai_timeout_seconds: float = Field(default=30.0)
    max_suggestion_casts: int = Field(default=25, ge=0)

    class Config:
        env_prefix = "CAST_INDEXER_"
        env_file = ".env"


def get_settings() -> Settings:
    """Get settings - environment variables take priority."""
    overrides = {}
    secrets_path = Path.home() / ".cast_indexer" / "secrets.json"
    if secrets_path.exists():
        with open(secrets_path) as f:
            data = json.load(f)
        for key in ("feed_api_token", "openai_api_key"):
            env_name = f"CAST_INDEXER_{key.upper()}"
            if data.get(key) and not os.environ.get(env_name):
                overrides[key] = data[key]

    return Settings(**overrides)


settings = get_settings()
