"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Sync tunables (quota, intervals, TTLs) live in ``sync_config.yaml``; see
    ``src.strava.config_loader``.
    """

    # --- App ---
    app_name: str = "Stride"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Supabase ---
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    supabase_access_token: str = ""  # user session JWT forwarded to edge functions
    supabase_user_id: str | None = None

    # --- Durable state ---
    storage_backend: str = "file"  # memory | file | postgres
    storage_path: Path = Path(".stride/state.json")
    database_url: str = ""  # only for storage_backend=postgres

    # --- Sync ---
    sync_config_path: Path | None = None  # override the bundled sync_config.yaml
    auto_sync_enabled: bool = True
    sync_timezone: str | None = None  # IANA zone for the daily quota reset; system zone if unset

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:5173"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
