"""Payload view bound to one repository datastream."""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime

from packages.storage_shared.logging import get_logger, repository_context
from resources.adapters.fedora import (
    DatastreamProfile,
    DatastreamStream,
    FedoraAdapterError,
)
from services.state.payload_storage.domain import (
    DEFAULT_MIME_TYPE,
    PAYLOAD_METADATA_LOG_MESSAGE,
    PayloadType,
)
from services.state.payload_storage.errors import BackendError
from services.state.payload_storage.service import StoredPayload
from services.state.payload_storage.session import FedoraSession

_LOGGER = get_logger(__name__)


class FedoraPayload(StoredPayload):
    """Payload metadata plus content access for one datastream."""

    def __init__(
        self,
        *,
        session: FedoraSession,
        payload_id: str,
        backend_pid: str,
        ds_id: str,
        label: str | None = None,
        content_type: str = DEFAULT_MIME_TYPE,
        payload_type: PayloadType = PayloadType.ENRICHMENT,
    ) -> None:
        self._session = session
        self._id = payload_id
        self._backend_pid = backend_pid
        self._ds_id = ds_id
        self._label = payload_id if label is None else label
        self._content_type = content_type or DEFAULT_MIME_TYPE
        self._payload_type = payload_type
        self._meta_changed = False

    @classmethod
    def from_profile(
        cls,
        *,
        session: FedoraSession,
        profile: DatastreamProfile,
        payload_id: str,
        backend_pid: str,
    ) -> FedoraPayload:
        """Build a payload from a datastream profile.

        The first alternate id carries the payload type.
        """
        stored_type = profile.alt_ids[0] if profile.alt_ids else None
        return cls(
            session=session,
            payload_id=payload_id,
            backend_pid=backend_pid,
            ds_id=profile.ds_id,
            label=profile.label,
            content_type=profile.mime_type,
            payload_type=PayloadType.parse(stored_type),
        )

    @property
    def id(self) -> str:
        return self._id

    @property
    def backend_pid(self) -> str:
        return self._backend_pid

    @property
    def ds_id(self) -> str:
        return self._ds_id

    @property
    def label(self) -> str:
        return self._label

    @label.setter
    def label(self, value: str) -> None:
        if value != self._label:
            self._label = value
            self._meta_changed = True

    @property
    def content_type(self) -> str:
        return self._content_type

    @content_type.setter
    def content_type(self, value: str) -> None:
        if value != self._content_type:
            self._content_type = value
            self._meta_changed = True

    @property
    def payload_type(self) -> PayloadType:
        return self._payload_type

    @payload_type.setter
    def payload_type(self, value: PayloadType) -> None:
        """Retag this payload; the owning object's source is left unchanged.

        Designate a source through ``create_stored_payload`` on the object.
        """
        if value != self._payload_type:
            self._payload_type = value
            self._meta_changed = True

    @property
    def meta_changed(self) -> bool:
        """Return whether metadata changed since the last flush."""
        return self._meta_changed

    def open(self) -> DatastreamStream | None:
        """Open the current content.

        Finished streams for this datastream are reclaimed first. Read
        failures are logged and yield ``None``.
        """
        self._session.release(self._backend_pid, self._ds_id)
        try:
            return self._session.open_stream(self._backend_pid, self._ds_id)
        except OSError:
            with self._log_context():
                _LOGGER.error("Unable to open payload content", exc_info=True)
            return None

    def close(self) -> None:
        """Reclaim finished streams and push pending metadata changes."""
        self._session.release(self._backend_pid, self._ds_id)
        if self._meta_changed:
            self._update_meta()

    def size(self) -> int | None:
        try:
            with self._session.exclusive() as client:
                profile = client.get_datastream(
                    pid=self._backend_pid, ds_id=self._ds_id
                )
        except FedoraAdapterError:
            with self._log_context():
                _LOGGER.error("Unable to query payload size", exc_info=True)
            return None
        return profile.size

    def last_modified(self) -> datetime | None:
        try:
            with self._session.exclusive() as client:
                history = client.get_datastream_history(
                    pid=self._backend_pid, ds_id=self._ds_id
                )
        except FedoraAdapterError:
            with self._log_context():
                _LOGGER.error("Unable to query payload history", exc_info=True)
            return None
        if not history:
            with self._log_context():
                _LOGGER.error("Payload has no datastream history")
            return None
        return history[0].created_at

    def _update_meta(self) -> None:
        """Write label, type and MIME type without touching content."""
        try:
            with self._session.exclusive() as client:
                client.modify_datastream(
                    pid=self._backend_pid,
                    ds_id=self._ds_id,
                    ds_location=None,
                    alt_ids=[str(self._payload_type), self._id],
                    ds_label=self._label,
                    mime_type=self._content_type,
                    versionable=False,
                    log_message=PAYLOAD_METADATA_LOG_MESSAGE,
                )
        except FedoraAdapterError as exc:
            raise BackendError(
                f"failed to update metadata of payload '{self._id}': {exc}"
            ) from exc
        self._meta_changed = False

    def _log_context(self) -> AbstractContextManager[None]:
        return repository_context(
            backend_pid=self._backend_pid,
            payload_id=self._id,
            datastream_id=self._ds_id,
        )

    def __repr__(self) -> str:
        return (
            f"FedoraPayload(id={self._id!r}, type={self._payload_type.value!r}, "
            f"label={self._label!r}, content_type={self._content_type!r})"
        )
