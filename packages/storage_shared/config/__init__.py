"""Public API for shared storage configuration utilities."""

from .loader import load_settings
from .models import (
    DEFAULT_CONFIG_PATH,
    ComponentsSettings,
    LoggingSettings,
    StorageSettings,
    resolve_component_settings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ComponentsSettings",
    "LoggingSettings",
    "StorageSettings",
    "load_settings",
    "resolve_component_settings",
]
