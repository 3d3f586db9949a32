"""Configuration loading with deterministic precedence.

The cascade is always:
1) CLI/init params
2) Environment variables
3) ~/.config/fedora-storage/storage.yaml (or an explicit ``config_path``)
4) Built-in model defaults

Environment variable format:
- Prefix: ``FEDORA_STORAGE_``
- Nested keys: ``__`` separator
- Example: ``FEDORA_STORAGE_LOGGING__LEVEL=DEBUG`` -> ``logging.level = "DEBUG"``
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    YamlConfigSettingsSource,
)

from .models import DEFAULT_CONFIG_PATH, StorageSettings


def load_settings(
    *,
    cli_params: Mapping[str, Any] | None = None,
    config_path: str | Path | None = None,
) -> StorageSettings:
    """Load root settings by applying the standard precedence cascade."""
    yaml_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    class _ResolvedStorageSettings(StorageSettings):
        """Root settings bound to one concrete YAML file location."""

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,
            file_secret_settings: PydanticBaseSettingsSource,
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            del dotenv_settings, file_secret_settings
            return (
                init_settings,
                env_settings,
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=yaml_path,
                    yaml_file_encoding="utf-8",
                ),
            )

    return _ResolvedStorageSettings(**dict(cli_params or {}))
