"""Caller-facing storage, object and payload contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from packages.storage_shared.config import StorageSettings
from resources.adapters.fedora import DatastreamStream
from services.state.payload_storage.domain import PayloadType

if TYPE_CHECKING:
    from services.state.payload_storage.session import AdapterFactory


class StoredPayload(ABC):
    """One named unit of content and metadata inside an object."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Return the caller-visible payload id."""

    @property
    @abstractmethod
    def label(self) -> str: ...

    @property
    @abstractmethod
    def content_type(self) -> str: ...

    @property
    @abstractmethod
    def payload_type(self) -> PayloadType: ...

    @abstractmethod
    def open(self) -> DatastreamStream | None:
        """Open the current content, or return ``None`` when it cannot be read."""

    @abstractmethod
    def close(self) -> None:
        """Release finished streams and flush pending metadata changes."""

    @abstractmethod
    def size(self) -> int | None:
        """Return content size in bytes, or ``None`` when unknown."""

    @abstractmethod
    def last_modified(self) -> datetime | None:
        """Return when the current content version was created, if known."""


class StoredObject(ABC):
    """Caller-visible container of payloads."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Return the caller-visible object id."""

    @property
    @abstractmethod
    def source_id(self) -> str | None:
        """Return the id of the payload designated as source, if any."""

    @property
    @abstractmethod
    def manifest(self) -> Mapping[str, StoredPayload]:
        """Return a read-only view of payloads keyed by payload id."""

    @abstractmethod
    def get_payload_id_list(self) -> set[str]:
        """Return ids of every payload in the manifest."""

    @abstractmethod
    def create_stored_payload(
        self,
        payload_id: str,
        stream: BinaryIO,
        *,
        payload_type: PayloadType | None = None,
    ) -> StoredPayload:
        """Store a new payload from ``stream``."""

    @abstractmethod
    def create_linked_payload(self, payload_id: str, path: str | Path) -> StoredPayload:
        """Create a payload referencing a local file."""

    @abstractmethod
    def get_payload(self, payload_id: str) -> StoredPayload:
        """Return a live view of one payload."""

    @abstractmethod
    def update_payload(self, payload_id: str, stream: BinaryIO) -> StoredPayload:
        """Replace one payload's content from ``stream``."""

    @abstractmethod
    def remove_payload(self, payload_id: str) -> None:
        """Delete one payload."""

    @abstractmethod
    def get_metadata(self) -> dict[str, str]:
        """Return mutable object-level properties."""

    @abstractmethod
    def close(self) -> None:
        """Persist changed object-level properties."""


class PayloadStorage(ABC):
    """Public API for object lifecycle and enumeration."""

    @property
    @abstractmethod
    def plugin_id(self) -> str: ...

    @property
    @abstractmethod
    def plugin_name(self) -> str: ...

    @abstractmethod
    def create_object(self, oid: str) -> StoredObject:
        """Create a new, empty object."""

    @abstractmethod
    def get_object(self, oid: str) -> StoredObject:
        """Return an existing object."""

    @abstractmethod
    def remove_object(self, oid: str) -> None:
        """Delete one object and all of its payloads."""

    @abstractmethod
    def list_object_ids(self) -> set[str]:
        """Return ids of every object stored in the configured namespace."""

    @abstractmethod
    def shutdown(self) -> None:
        """Release the repository session."""


def build_fedora_storage(
    *,
    settings: StorageSettings,
    adapter_factory: AdapterFactory | None = None,
) -> PayloadStorage:
    """Build the default repository-backed storage from typed settings."""
    from services.state.payload_storage.storage import FedoraStorage

    return FedoraStorage.from_settings(settings, adapter_factory=adapter_factory)
