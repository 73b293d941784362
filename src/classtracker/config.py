"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (CLASSTRACKER__API__BASE_URL=https://...)
  3. classtracker.yaml      (searched in cwd, then the platform config dir)
  4. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_CONFIG_DIR = platformdirs.user_config_dir("classtracker")
_CONFIG_FILENAME = "classtracker.yaml"


def _find_config_file() -> str | None:
    """Return the path of the first classtracker.yaml found, or None."""
    candidates = [
        Path(_CONFIG_FILENAME),
        Path(_DEFAULT_CONFIG_DIR) / _CONFIG_FILENAME,
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class _Section(BaseModel):
    # A typo in a nested key must fail loudly instead of falling back to the default.
    model_config = ConfigDict(extra="forbid")


class ApiSettings(_Section):
    base_url: str = "http://localhost:8000"
    timeout_seconds: float = Field(default=10.0, gt=0)


class CatalogSettings(_Section):
    page_size: int = Field(default=50, ge=1)
    default_query: str = "*"


class SubscriptionSettings(_Section):
    poll_interval_seconds: float = Field(default=60.0, gt=0)


class NotificationSettings(_Section):
    duration_ms: int = Field(default=3000, gt=0)


class LoggingSettings(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: CLASSTRACKER__CATALOG__PAGE_SIZE=25
        env_prefix="CLASSTRACKER__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
        extra="forbid",
    )

    api: ApiSettings = ApiSettings()
    catalog: CatalogSettings = CatalogSettings()
    subscriptions: SubscriptionSettings = SubscriptionSettings()
    notifications: NotificationSettings = NotificationSettings()
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
