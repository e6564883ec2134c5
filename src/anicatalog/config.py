"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (ANICATALOG__CACHE__BACKEND=sqlite)
  2. anicatalog.yaml        (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("anicatalog")
_DEFAULT_CACHE_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")
_DEFAULT_STORE_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "catalog.db")


def _find_config_file() -> str | None:
    """Return the path of the first anicatalog.yaml found, or None."""
    candidates = [
        Path("anicatalog.yaml"),
        Path(platformdirs.user_config_dir("anicatalog")) / "anicatalog.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class UpstreamSettings(BaseModel):
    base_url: str = "https://api.jikan.moe/v4"
    # Per-call budget; bounds how long a single-flight slot can be held.
    timeout_seconds: float = Field(default=8.0, gt=0)
    requests_per_second: float = Field(default=3.0, gt=0)
    max_connections: int = 10
    search_page_size: int = 25


class CacheSettings(BaseModel):
    backend: Literal["memory", "sqlite"] = "memory"
    db_path: str = _DEFAULT_CACHE_DB_PATH
    entity_ttl_hours: int = 24 * 7
    search_ttl_hours: int = 24
    negative_ttl_seconds: int = 300
    cleanup_interval_hours: int = 6


class StoreSettings(BaseModel):
    db_path: str = _DEFAULT_STORE_DB_PATH


class SearchSettings(BaseModel):
    supplement_threshold: int = 5
    default_limit: int = 20
    max_limit: int = 100


class ScheduleSettings(BaseModel):
    overfetch_factor: int = Field(default=3, ge=1)
    # Cross-timezone scans stop here once the requested page is filled.
    max_scan: int = 2000
    default_limit: int = 20
    max_limit: int = 100


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: ANICATALOG__UPSTREAM__TIMEOUT_SECONDS=5
        env_prefix="ANICATALOG__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    upstream: UpstreamSettings = UpstreamSettings()
    cache: CacheSettings = CacheSettings()
    store: StoreSettings = StoreSettings()
    search: SearchSettings = SearchSettings()
    schedule: ScheduleSettings = ScheduleSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
