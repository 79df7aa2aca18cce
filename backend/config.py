"""Configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./voice_app.db"

    # Google Drive (service account)
    google_keyfile: str = "service-account.json"
    google_drive_parent_folder_id: str = ""

    # Local staging area for uploads
    upload_dir: str = "uploads"

    # Expiry
    retention_hours: int = 12
    file_sweep_interval_seconds: int = 12 * 60 * 60
    public_sweep_interval_seconds: int = 12 * 60 * 60
    sweeper_poll_seconds: int = 60

    # HTTP
    frontend_origin: str = "*"
    host: str = "0.0.0.0"
    port: int = 3000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
