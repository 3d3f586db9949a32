"""Transport-agnostic Fedora repository adapter contracts and DTOs."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Protocol, Sequence

from pydantic import BaseModel, ConfigDict


class FedoraAdapterError(Exception):
    """Base exception for adapter-level failures."""


class FedoraAdapterDependencyError(FedoraAdapterError):
    """Dependency-level failure (network/upstream unavailable)."""


class FedoraAdapterInvalidUrlError(FedoraAdapterError):
    """Configured server URL cannot be used to address the repository."""


class FedoraAdapterAccessError(FedoraAdapterError):
    """Repository rejected the configured credentials."""


class FedoraAdapterInternalError(FedoraAdapterError):
    """Internal adapter failure (schema/mapping/contract mismatch)."""


class FedoraAdapterNotFoundError(FedoraAdapterError):
    """Target object or datastream does not exist."""


class FedoraAdapterConflictError(FedoraAdapterError):
    """Operation conflicted with current repository state."""


class RepositoryInfo(BaseModel):
    """Repository identity reported by the describe endpoint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = ""
    version: str
    base_url: str = ""


class DatastreamProfile(BaseModel):
    """One datastream profile (current or historic version)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pid: str
    ds_id: str
    label: str = ""
    version_id: str = ""
    created_at: datetime | None = None
    state: str = ""
    mime_type: str = ""
    control_group: str = ""
    size: int | None = None
    versionable: bool = False
    location: str = ""
    alt_ids: tuple[str, ...] = ()


class SearchRow(BaseModel):
    """One object row returned by a field search."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pid: str
    label: str = ""


class SearchPage(BaseModel):
    """One page of field search results plus its continuation token."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rows: tuple[SearchRow, ...] = ()
    session_token: str = ""

    @property
    def has_next(self) -> bool:
        """Return whether the server holds further pages for this search."""
        return self.session_token != ""


class DatastreamStream(Protocol):
    """Readable byte stream over one datastream dissemination."""

    @property
    def closed(self) -> bool:
        """Return whether the caller closed the stream."""

    @property
    def exhausted(self) -> bool:
        """Return whether the response body has been fully consumed."""

    @property
    def failed(self) -> bool:
        """Return whether reading the response body raised an error."""

    def read(self, size: int = -1, /) -> bytes | None:
        """Read up to ``size`` bytes (all remaining bytes when negative)."""

    def close(self) -> None:
        """Release the underlying connection."""


class FedoraAdapter(Protocol):
    """Protocol for Fedora Commons 3.x REST API-backed repository operations."""

    def describe_repository(self) -> RepositoryInfo:
        """Return repository identity including the server version."""

    def get_object_xml(self, *, pid: str) -> bytes:
        """Return the serialized object XML for one PID."""

    def find_objects(
        self, *, terms: str, max_results: int, session_token: str = ""
    ) -> SearchPage:
        """Run one field search page, resuming from ``session_token`` if given."""

    def ingest(self, *, content: bytes, format_uri: str, log_message: str) -> str:
        """Ingest one serialized object and return the PID the server assigned."""

    def purge_object(self, *, pid: str, log_message: str) -> None:
        """Permanently remove one object."""

    def add_datastream(
        self,
        *,
        pid: str,
        ds_id: str,
        ds_location: str,
        alt_ids: Sequence[str],
        ds_label: str,
        mime_type: str,
        versionable: bool,
        control_group: str,
        ds_state: str,
        log_message: str,
    ) -> DatastreamProfile:
        """Register one datastream whose content is fetched from ``ds_location``."""

    def modify_datastream(
        self,
        *,
        pid: str,
        ds_id: str,
        ds_location: str | None,
        alt_ids: Sequence[str],
        ds_label: str,
        mime_type: str,
        versionable: bool,
        log_message: str,
    ) -> DatastreamProfile:
        """Modify one datastream; ``ds_location=None`` leaves content untouched."""

    def purge_datastream(self, *, pid: str, ds_id: str, log_message: str) -> None:
        """Permanently remove one datastream."""

    def get_datastream(self, *, pid: str, ds_id: str) -> DatastreamProfile:
        """Return the current profile of one datastream."""

    def get_datastreams(self, *, pid: str) -> list[DatastreamProfile]:
        """Return current profiles of every datastream on one object."""

    def get_datastream_history(
        self, *, pid: str, ds_id: str
    ) -> list[DatastreamProfile]:
        """Return every stored version of one datastream, newest first."""

    def open_datastream_content(self, *, pid: str, ds_id: str) -> DatastreamStream:
        """Open a streaming read of one datastream's content."""

    def upload(self, *, path: Path, mime_type: str) -> str:
        """Upload one local file to temporary storage and return its location."""

    def close(self) -> None:
        """Release transport resources."""
