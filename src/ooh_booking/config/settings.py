"""Configuration settings for the OOH booking engines."""

from functools import lru_cache
from typing import Optional

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

    # Database / Storage Configuration
    database_url: str = "sqlite:///./ooh_booking.db"
    storage_type: str = "sqlite"

    # Event publishing
    redis_url: Optional[str] = None
    event_channel: str = "ooh_booking:events"

    # Authorization criteria
    criteria_formats: list[str] = Field(default_factory=lambda: ["PARABUS", "COLUMNA"])
    principal_markets: list[str] = Field(
        default_factory=lambda: ["CIUDAD DE MEXICO", "GUADALAJARA", "MONTERREY"]
    )

    # Approval tasks
    approval_due_days: int = 7
    dg_approvers: list[str] = Field(default_factory=list)
    dcm_approvers: list[str] = Field(default_factory=list)

    # Inventory allocation
    progress_every: int = 5  # emit allocation.progress every N reservations

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
