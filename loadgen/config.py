"""
Process-level settings for the load job runtime.

Uses Pydantic Settings to load environment variables for the PostgreSQL
record store, logging, result persistence and driver defaults. Per-run job
parameters live in `loadgen.domain.models.JobConfig`.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Record store database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("loadgen", alias="DB_NAME")
    db_table: str = Field("records", alias="DB_TABLE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    results_dir: str = Field("results", alias="RESULTS_DIR")

    # Driver defaults
    collection_interval_seconds: int = Field(10, alias="COLLECTION_INTERVAL_SECONDS")
    default_threads: int = Field(1, alias="DEFAULT_THREADS")
    drain_timeout_seconds: float = Field(5.0, alias="DRAIN_TIMEOUT_SECONDS")
    stop_poll_seconds: float = Field(0.05, alias="STOP_POLL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
