"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Every variable carries the ``FERTILITY_`` prefix, e.g. ``FERTILITY_LOG_LEVEL``.
    """

    # --- App ---
    app_name: str = "Fertility Engine"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    storage_backend: str = "memory"  # memory | json
    storage_path: Path = Path("fertility_records.json")

    # --- Tuning ---
    tuning_config_path: Path | None = None  # defaults to the bundled fertility_config.yaml
    cache_ttl_seconds: float | None = None  # overrides cache.ttl_seconds
    cache_max_entries: int | None = None  # overrides cache.max_entries

    model_config = {
        "env_prefix": "FERTILITY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
