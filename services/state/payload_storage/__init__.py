"""Repository-backed payload storage package exports."""

from services.state.payload_storage.config import (
    SERVICE_COMPONENT_ID,
    PayloadStorageSettings,
    resolve_payload_storage_settings,
)
from services.state.payload_storage.digital_object import FedoraDigitalObject
from services.state.payload_storage.domain import (
    CORE_METADATA_PAYLOAD_ID,
    PLUGIN_ID,
    PLUGIN_NAME,
    PayloadType,
)
from services.state.payload_storage.errors import (
    AccessError,
    AlreadyExistsError,
    BackendConnectionError,
    BackendError,
    ConfigurationError,
    DuplicateError,
    ExclusiveHandleInterruptedError,
    IdentifierMismatchError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
    VersionMismatchError,
)
from services.state.payload_storage.identifiers import IdentifierTranslator
from services.state.payload_storage.payload import FedoraPayload
from services.state.payload_storage.service import (
    PayloadStorage,
    StoredObject,
    StoredPayload,
    build_fedora_storage,
)
from services.state.payload_storage.session import FedoraSession
from services.state.payload_storage.storage import FedoraStorage

__all__ = [
    "AccessError",
    "AlreadyExistsError",
    "BackendConnectionError",
    "BackendError",
    "CORE_METADATA_PAYLOAD_ID",
    "ConfigurationError",
    "DuplicateError",
    "ExclusiveHandleInterruptedError",
    "FedoraDigitalObject",
    "FedoraPayload",
    "FedoraSession",
    "FedoraStorage",
    "IdentifierMismatchError",
    "IdentifierTranslator",
    "InvalidArgumentError",
    "NotFoundError",
    "PLUGIN_ID",
    "PLUGIN_NAME",
    "PayloadStorage",
    "PayloadStorageSettings",
    "PayloadType",
    "SERVICE_COMPONENT_ID",
    "StorageError",
    "StoredObject",
    "StoredPayload",
    "VersionMismatchError",
    "build_fedora_storage",
    "resolve_payload_storage_settings",
]
