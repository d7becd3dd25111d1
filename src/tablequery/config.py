"""
tablequery - Configuration and settings.

EngineSettings holds the knobs every Query instance reads at construction
time. Values come from the environment (TABLEQUERY_*) or a local .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """
    Engine-wide settings.

    Per-table details (columns, aliases, cache groups) live on the
    TableDefinition; only cross-cutting defaults go here.
    """

    model_config = SettingsConfigDict(
        env_prefix="TABLEQUERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Prefix applied to table names, aliases, and cache groups
    table_prefix: str = ""

    # Default page size for query(); 0 means no LIMIT
    default_number: int = Field(default=100, ge=0)

    # Raise MalformedArgumentError on unknown orderby/groupby/search columns
    # instead of silently dropping them
    strict_arguments: bool = False

    # Set to False to run every query against the database
    cache_enabled: bool = True

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Default database for the CLI
    sqlite_path: str = ":memory:"


@lru_cache
def get_settings() -> EngineSettings:
    """Get cached EngineSettings instance."""
    return EngineSettings()


class _SettingsProxy:
    """Lazy proxy so importing this module never reads the environment."""

    _instance: EngineSettings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
