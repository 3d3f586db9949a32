"""Pydantic settings for the Fedora repository adapter resource."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packages.storage_shared.config import StorageSettings, resolve_component_settings

RESOURCE_COMPONENT_ID = "adapter_fedora"

DEFAULT_BASE_URL = "http://localhost:8080/fedora/"
DEFAULT_NAMESPACE = "uuid"


class FedoraAdapterSettings(BaseModel):
    """Runtime settings for Fedora REST API access."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = DEFAULT_BASE_URL
    username: str = ""
    password: str = ""
    namespace: str = DEFAULT_NAMESPACE
    timeout_seconds: float = Field(default=15.0, gt=0)

    @field_validator("base_url", "namespace")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        """Strip surrounding whitespace from identity fields."""
        return value.strip()


def resolve_fedora_adapter_settings(
    settings: StorageSettings,
) -> FedoraAdapterSettings:
    """Resolve adapter settings from ``components.adapter.fedora``."""
    return resolve_component_settings(
        settings=settings,
        component_id=RESOURCE_COMPONENT_ID,
        model=FedoraAdapterSettings,
    )
