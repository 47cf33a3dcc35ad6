"""
Application configuration loaded from environment variables.

All configuration is validated at startup to fail fast on misconfiguration.
"""

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with validation.

    All settings are loaded from environment variables with the same name.
    Use .env file for local development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Persistence
    storage_backend: Literal["file", "database", "memory"] = Field(
        default="file",
        description="Where the state document is persisted",
    )
    storage_path: Path = Field(
        default=Path("./storage"),
        description="Directory for the file backend",
    )
    state_key: str = Field(
        default="medverify_state_vr1",
        min_length=1,
        description="Storage key the whole state document lives under",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./medverify.db",
        description="SQLAlchemy async URL for the database backend",
    )
    bootstrap_demo: bool = Field(
        default=True,
        description="Seed a demo manufacturer and batch when no state exists",
    )

    # One-time code lockout
    otp_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Wrong codes tolerated before a batch is locked",
    )
    lock_duration_minutes: int = Field(
        default=15,
        ge=1,
        description="How long a batch stays locked after too many wrong codes",
    )

    # Simulated anchoring
    anchor_chain: str = Field(
        default="simulated-testnet",
        description="Chain label written on simulated anchor records",
    )

    # Verification links
    public_base_url: str = Field(
        default="http://localhost:8000/api/v1/verify",
        description="Base URL encoded in batch QR codes",
    )

    # Server
    debug: bool = Field(
        default=False,
        description="Enable debug mode with detailed error messages"
    )

    @property
    def lock_duration(self) -> timedelta:
        """Lock window as a timedelta."""
        return timedelta(minutes=self.lock_duration_minutes)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once at startup and cached for subsequent calls.
    This ensures consistent configuration across the application lifecycle.
    """
    return Settings()
