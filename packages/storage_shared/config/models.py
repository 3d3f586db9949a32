"""Typed configuration models for payload storage runtime settings."""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "fedora-storage" / "storage.yaml"

_COMPONENT_KINDS = frozenset({"service", "adapter"})


class LoggingSettings(BaseModel):
    """Structured logging configuration shared by storage components."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_output: bool = True
    service: str = "fedora-storage"
    environment: str = "dev"


class ComponentNamespaceSettings(BaseModel):
    """Namespace map for grouped component settings under ``components.<kind>``."""

    model_config = ConfigDict(extra="allow")


class ComponentsSettings(BaseModel):
    """Typed ``components`` subtree with support for component-local extras."""

    model_config = ConfigDict(extra="allow")

    service: ComponentNamespaceSettings = Field(
        default_factory=ComponentNamespaceSettings
    )
    adapter: ComponentNamespaceSettings = Field(
        default_factory=ComponentNamespaceSettings
    )

    @model_validator(mode="before")
    @classmethod
    def _reject_flat_component_keys(cls, value: object) -> object:
        """Reject flat component keys in favor of grouped namespaces."""
        if not isinstance(value, dict):
            return value
        flat_prefixed_keys = tuple(
            key
            for key in value
            if isinstance(key, str) and key.startswith(("service_", "adapter_"))
        )
        if not flat_prefixed_keys:
            return value

        bad_key = flat_prefixed_keys[0]
        kind, _, name = bad_key.partition("_")
        raise ValueError(
            f"components.{bad_key} is invalid; use components.{kind}.{name} instead"
        )


class StorageSettings(BaseSettings):
    """Root runtime settings resolved from init/env/yaml/defaults sources."""

    model_config = SettingsConfigDict(
        env_prefix="FEDORA_STORAGE_",
        env_nested_delimiter="__",
        extra="ignore",
        nested_model_default_partial_update=True,
    )

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    components: ComponentsSettings = Field(default_factory=ComponentsSettings)

    _config_path: ClassVar[Path] = DEFAULT_CONFIG_PATH

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Apply precedence: init > env > yaml > model defaults."""
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(
                settings_cls,
                yaml_file=cls._config_path,
                yaml_file_encoding="utf-8",
            ),
        )


TComponentSettings = TypeVar("TComponentSettings", bound=BaseModel)


def resolve_component_settings(
    *,
    settings: StorageSettings,
    component_id: str,
    model: type[TComponentSettings],
) -> TComponentSettings:
    """Resolve one component settings object from grouped ``components`` keys."""
    raw_components = settings.components.model_dump(mode="python")
    kind, separator, name = component_id.partition("_")
    if not separator or kind not in _COMPONENT_KINDS:
        raise ValueError(
            f"component_id must be '<kind>_<name>' with kind in "
            f"{sorted(_COMPONENT_KINDS)}: {component_id!r}"
        )

    namespace = raw_components.get(kind, {})
    namespace_path = f"components.{kind}"
    if not isinstance(namespace, dict):
        raise TypeError(f"{namespace_path} must resolve to an object mapping")
    resolved = namespace.get(name, {})
    if not isinstance(resolved, dict):
        raise TypeError(f"{namespace_path}.{name} must resolve to an object mapping")
    return model.model_validate(resolved)
