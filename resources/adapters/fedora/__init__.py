"""Fedora repository adapter resource exports."""

from resources.adapters.fedora.adapter import (
    DatastreamProfile,
    DatastreamStream,
    FedoraAdapter,
    FedoraAdapterAccessError,
    FedoraAdapterConflictError,
    FedoraAdapterDependencyError,
    FedoraAdapterError,
    FedoraAdapterInternalError,
    FedoraAdapterInvalidUrlError,
    FedoraAdapterNotFoundError,
    RepositoryInfo,
    SearchPage,
    SearchRow,
)
from resources.adapters.fedora.config import (
    DEFAULT_BASE_URL,
    DEFAULT_NAMESPACE,
    RESOURCE_COMPONENT_ID,
    FedoraAdapterSettings,
    resolve_fedora_adapter_settings,
)
from resources.adapters.fedora.fedora_adapter import (
    DatastreamContent,
    FedoraRestAdapter,
)

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_NAMESPACE",
    "DatastreamContent",
    "DatastreamProfile",
    "DatastreamStream",
    "FedoraAdapter",
    "FedoraAdapterAccessError",
    "FedoraAdapterConflictError",
    "FedoraAdapterDependencyError",
    "FedoraAdapterError",
    "FedoraAdapterInternalError",
    "FedoraAdapterInvalidUrlError",
    "FedoraAdapterNotFoundError",
    "FedoraAdapterSettings",
    "FedoraRestAdapter",
    "RESOURCE_COMPONENT_ID",
    "RepositoryInfo",
    "SearchPage",
    "SearchRow",
    "resolve_fedora_adapter_settings",
]
