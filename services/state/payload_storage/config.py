"""Pydantic settings for payload storage service behavior."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from packages.storage_shared.config import StorageSettings, resolve_component_settings
from resources.adapters.fedora.config import (
    FedoraAdapterSettings,
    resolve_fedora_adapter_settings,
)
from services.state.payload_storage.errors import ConfigurationError

SERVICE_COMPONENT_ID = "service_payload_storage"


class PayloadStorageSettings(BaseModel):
    """Payload storage runtime behavior settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    object_template_path: Path | None = None
    search_page_size: int = Field(default=1000, gt=0)
    staging_dir: Path | None = None

    @field_validator("object_template_path", "staging_dir", mode="before")
    @classmethod
    def _blank_path_is_unset(cls, value: object) -> object:
        """Treat blank path strings as unset."""
        if isinstance(value, str) and value.strip() == "":
            return None
        return value


def resolve_payload_storage_settings(
    settings: StorageSettings,
) -> PayloadStorageSettings:
    """Resolve settings from ``components.service.payload_storage``."""
    try:
        return resolve_component_settings(
            settings=settings,
            component_id=SERVICE_COMPONENT_ID,
            model=PayloadStorageSettings,
        )
    except (ValidationError, TypeError) as exc:
        raise ConfigurationError(
            f"invalid components.service.payload_storage settings: {exc}"
        ) from exc


def resolve_backend_settings(settings: StorageSettings) -> FedoraAdapterSettings:
    """Resolve repository adapter settings as a configuration-checked model."""
    try:
        return resolve_fedora_adapter_settings(settings)
    except (ValidationError, TypeError) as exc:
        raise ConfigurationError(
            f"invalid components.adapter.fedora settings: {exc}"
        ) from exc
