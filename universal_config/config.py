"""Application configuration and logging setup."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # API
    app_name: str = "Universal Configuration Rule Engine"
    debug: bool = False
    log_level: str = "INFO"

    # Storage
    store_backend: Literal["memory", "sql"] = "sql"
    database_url: str | None = None

    # Rule cache
    cache_ttl_seconds: float = 30.0
    cache_max_entries: int = 1000

    # Evaluation
    default_timeout_seconds: float | None = None

    # Paths
    templates_dir: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the service process."""
    level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
