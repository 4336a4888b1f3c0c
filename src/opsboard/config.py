"""Configuration management for Opsboard."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OPSBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote store
    store_url: str = Field(description="Base URL of the REST endpoint, e.g. https://x.supabase.co/rest/v1")
    store_key: str = Field(description="API key for the remote store")

    # Tables
    tasks_table: str = Field(default="tasks", description="Table backing the tasks board")
    content_table: str = Field(default="content_items", description="Table backing the content pipeline")
    team_table: str = Field(default="team_members", description="Table backing the team status board")
    notes_table: str = Field(default="memories", description="Table backing the note store")

    # Search
    page_size: int = Field(
        default=30,
        ge=1,
        le=500,
        description="Number of notes fetched per page",
    )
    debounce_seconds: float = Field(
        default=0.3,
        ge=0.0,
        le=5.0,
        description="Quiet period before a typed search query is fetched",
    )

    # Change feed
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Interval between change-feed fingerprint polls",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
