"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is loaded from ALLTIME_* environment variables (or .env file)."""

    # --- App ---
    app_name: str = "AllTime"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Backend ---
    api_base_url: str
    api_token: str | None = None  # bearer token; normally injected by the session layer
    http_timeout_seconds: float = 30.0

    # --- Calendar days ---
    timezone: str = "UTC"  # IANA name used for local midnight-to-midnight aggregation

    # --- Tunables ---
    sync_config_path: Path | None = None  # overrides the bundled sync_config.yaml

    model_config = SettingsConfigDict(
        env_prefix="ALLTIME_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
