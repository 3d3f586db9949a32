"""Repository-backed object: manifest synchronization and payload lifecycle."""

from __future__ import annotations

import io
import threading
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import BinaryIO

from packages.storage_shared.logging import (
    get_logger,
    public_api_logged,
    repository_context,
)
from resources.adapters.fedora import (
    DatastreamProfile,
    FedoraAdapter,
    FedoraAdapterError,
    FedoraAdapterNotFoundError,
)
from services.state.payload_storage.config import SERVICE_COMPONENT_ID
from services.state.payload_storage.domain import (
    ACTIVE_STATE,
    CORE_METADATA_PAYLOAD_ID,
    DUBLIN_CORE_DATASTREAM_ID,
    MANAGED_CONTROL_GROUP,
    PAYLOAD_ADDED_LOG_MESSAGE,
    PAYLOAD_DELETED_LOG_MESSAGE,
    PAYLOAD_UPDATED_LOG_MESSAGE,
    PayloadType,
)
from services.state.payload_storage.errors import (
    BackendError,
    DuplicateError,
    InvalidArgumentError,
    NotFoundError,
)
from services.state.payload_storage.identifiers import (
    IdentifierTranslator,
    escape_payload_id,
)
from services.state.payload_storage.payload import FedoraPayload
from services.state.payload_storage.service import StoredObject
from services.state.payload_storage.session import FedoraSession
from services.state.payload_storage.staging import StagedUpload, stage_stream

_LOGGER = get_logger(__name__)


class FedoraDigitalObject(StoredObject):
    """One caller object backed by one repository object."""

    def __init__(
        self,
        *,
        session: FedoraSession,
        translator: IdentifierTranslator,
        oid: str,
        backend_pid: str,
        staging_dir: Path | None = None,
    ) -> None:
        self._session = session
        self._translator = translator
        self._id = oid
        self._backend_pid = backend_pid
        self._staging_dir = staging_dir
        self._lock = threading.RLock()
        self._manifest: dict[str, FedoraPayload] = {}
        self._source_id: str | None = None
        self._pending_deletions: set[str] = set()
        self._metadata: dict[str, str] | None = None
        self._metadata_snapshot: dict[str, str] = {}

    @classmethod
    def materialize(
        cls,
        *,
        session: FedoraSession,
        translator: IdentifierTranslator,
        oid: str,
        backend_pid: str,
        staging_dir: Path | None = None,
    ) -> FedoraDigitalObject:
        """Build an object and load its manifest from the repository."""
        digital_object = cls(
            session=session,
            translator=translator,
            oid=oid,
            backend_pid=backend_pid,
            staging_dir=staging_dir,
        )
        digital_object.build_manifest()
        return digital_object

    @property
    def id(self) -> str:
        return self._id

    @property
    def backend_id(self) -> str:
        return self._backend_pid

    @property
    def source_id(self) -> str | None:
        return self._source_id

    @source_id.setter
    def source_id(self, value: str | None) -> None:
        self._source_id = value

    @property
    def manifest(self) -> Mapping[str, FedoraPayload]:
        with self._lock:
            return MappingProxyType(dict(self._manifest))

    @property
    def pending_deletions(self) -> frozenset[str]:
        """Return payload ids whose repository purge failed and awaits retry."""
        with self._lock:
            return frozenset(self._pending_deletions)

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def get_payload_id_list(self) -> set[str]:
        with self._lock:
            return set(self._manifest)

    def build_manifest(self) -> None:
        """Rebuild the manifest from the repository datastream listing.

        A listing failure is logged and leaves the manifest empty.
        """
        with self._lock:
            self._manifest.clear()
            self._source_id = None
            try:
                profiles = self._session.client.get_datastreams(
                    pid=self._backend_pid
                )
            except FedoraAdapterError:
                with repository_context(
                    object_id=self._id, backend_pid=self._backend_pid
                ):
                    _LOGGER.error("Unable to list object datastreams", exc_info=True)
                return

            for profile in profiles:
                payload_id = _payload_id_for(profile)
                if payload_id is None:
                    continue
                payload = FedoraPayload.from_profile(
                    session=self._session,
                    profile=profile,
                    payload_id=payload_id,
                    backend_pid=self._backend_pid,
                )
                if payload.payload_type is PayloadType.SOURCE:
                    self._source_id = payload_id
                self._manifest[payload_id] = payload

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("payload_id",),
    )
    def create_stored_payload(
        self,
        payload_id: str,
        stream: BinaryIO,
        *,
        payload_type: PayloadType | None = None,
    ) -> FedoraPayload:
        """Stage, upload and register a new payload.

        Without an explicit type the first non-metadata payload becomes the
        source and every later one is an enrichment.
        An object holds at most one source, so an explicit source type is
        rejected while a different payload already fills that role.
        """
        _require_id(payload_id, what="payload id")
        if stream is None:
            raise InvalidArgumentError("payload stream is required")
        payload_id = escape_payload_id(payload_id)

        with self._lock:
            if payload_id in self._manifest:
                raise DuplicateError(
                    f"payload '{payload_id}' already exists in object '{self._id}'"
                )
            if payload_type is PayloadType.SOURCE and self._source_id is not None:
                raise DuplicateError(
                    f"object '{self._id}' already has source payload "
                    f"'{self._source_id}'"
                )
            resolved_type = payload_type or self._infer_payload_type(payload_id)
            ds_id = self._translator.to_backend_datastream_id(payload_id)

            staged = stage_stream(
                payload_id=payload_id, stream=stream, staging_dir=self._staging_dir
            )
            try:
                with self._session.exclusive() as client:
                    location = _upload(client, staged)
                    written = client.add_datastream(
                        pid=self._backend_pid,
                        ds_id=ds_id,
                        ds_location=location,
                        alt_ids=[str(resolved_type), payload_id],
                        ds_label=payload_id,
                        mime_type=staged.mime_type,
                        versionable=False,
                        control_group=MANAGED_CONTROL_GROUP,
                        ds_state=ACTIVE_STATE,
                        log_message=PAYLOAD_ADDED_LOG_MESSAGE,
                    )
            except FedoraAdapterError as exc:
                raise BackendError(
                    f"failed to store payload '{payload_id}' "
                    f"in object '{self._id}': {exc}"
                ) from exc
            finally:
                staged.discard()

            payload = self._refetch(payload_id, fallback=written)
            self._manifest[payload_id] = payload
            if resolved_type is PayloadType.SOURCE:
                self._source_id = payload_id
            return payload

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("payload_id",),
    )
    def create_linked_payload(self, payload_id: str, path: str | Path) -> FedoraPayload:
        """Store a copy of a local file; the repository cannot link payloads."""
        _LOGGER.warning(
            "Linked payloads are not supported by this storage; converting to stored: "
            "payload_id=%s",
            payload_id,
        )
        try:
            stream = open(path, "rb")
        except OSError as exc:
            raise BackendError(f"unable to read linked file '{path}': {exc}") from exc
        try:
            return self.create_stored_payload(payload_id, stream)
        finally:
            stream.close()

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("payload_id",),
    )
    def get_payload(self, payload_id: str) -> FedoraPayload:
        """Fetch current metadata for one payload present in the manifest."""
        _require_id(payload_id, what="payload id")
        payload_id = escape_payload_id(payload_id)
        with self._lock:
            if payload_id not in self._manifest:
                raise NotFoundError(
                    f"payload '{payload_id}' not found in object '{self._id}'"
                )
        return self._fetch_payload(payload_id)

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("payload_id",),
    )
    def update_payload(self, payload_id: str, stream: BinaryIO) -> FedoraPayload:
        """Replace payload content, keeping its type and label."""
        _require_id(payload_id, what="payload id")
        if stream is None:
            raise InvalidArgumentError("payload stream is required")
        payload_id = escape_payload_id(payload_id)

        with self._lock:
            existing = self._manifest.get(payload_id)
            if existing is None:
                raise NotFoundError(
                    f"payload '{payload_id}' not found in object '{self._id}'"
                )
            ds_id = self._translator.to_backend_datastream_id(payload_id)

            staged = stage_stream(
                payload_id=payload_id, stream=stream, staging_dir=self._staging_dir
            )
            try:
                with self._session.exclusive() as client:
                    location = _upload(client, staged)
                    written = client.modify_datastream(
                        pid=self._backend_pid,
                        ds_id=ds_id,
                        ds_location=location,
                        alt_ids=[str(existing.payload_type), payload_id],
                        ds_label=existing.label,
                        mime_type=staged.mime_type,
                        versionable=False,
                        log_message=PAYLOAD_UPDATED_LOG_MESSAGE,
                    )
            except FedoraAdapterError as exc:
                raise BackendError(
                    f"failed to update payload '{payload_id}' "
                    f"in object '{self._id}': {exc}"
                ) from exc
            finally:
                staged.discard()

            payload = self._refetch(payload_id, fallback=written)
            self._manifest[payload_id] = payload
            return payload

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("payload_id",),
    )
    def remove_payload(self, payload_id: str) -> None:
        """Purge one payload.

        A failed purge is logged and the entry is kept, flagged in
        ``pending_deletions``; removing it again re-issues the purge.
        """
        _require_id(payload_id, what="payload id")
        payload_id = escape_payload_id(payload_id)
        with self._lock:
            if payload_id not in self._manifest:
                raise NotFoundError(
                    f"payload '{payload_id}' not found in object '{self._id}'"
                )
            ds_id = self._translator.to_backend_datastream_id(payload_id)
            try:
                with self._session.exclusive() as client:
                    client.purge_datastream(
                        pid=self._backend_pid,
                        ds_id=ds_id,
                        log_message=PAYLOAD_DELETED_LOG_MESSAGE,
                    )
            except FedoraAdapterNotFoundError:
                _LOGGER.info(
                    "Payload datastream already absent: payload_id=%s", payload_id
                )
            except FedoraAdapterError:
                self._pending_deletions.add(payload_id)
                with repository_context(
                    object_id=self._id,
                    backend_pid=self._backend_pid,
                    payload_id=payload_id,
                    datastream_id=ds_id,
                ):
                    _LOGGER.error(
                        "Payload purge failed; entry kept pending deletion",
                        exc_info=True,
                    )
                return

            del self._manifest[payload_id]
            self._pending_deletions.discard(payload_id)
            if self._source_id == payload_id:
                self._source_id = None

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def get_metadata(self) -> dict[str, str]:
        """Return object properties loaded from the core metadata payload."""
        with self._lock:
            if self._metadata is None:
                self._metadata = self._load_metadata()
                self._metadata_snapshot = dict(self._metadata)
            return self._metadata

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def close(self) -> None:
        """Persist object properties when they changed since loading."""
        with self._lock:
            if self._metadata is None or self._metadata == self._metadata_snapshot:
                return
            content = io.BytesIO(format_properties(self._metadata).encode("utf-8"))
            if CORE_METADATA_PAYLOAD_ID in self._manifest:
                self.update_payload(CORE_METADATA_PAYLOAD_ID, content)
            else:
                self.create_stored_payload(CORE_METADATA_PAYLOAD_ID, content)
            self._metadata_snapshot = dict(self._metadata)

    def _infer_payload_type(self, payload_id: str) -> PayloadType:
        if self._source_id is None and payload_id != CORE_METADATA_PAYLOAD_ID:
            return PayloadType.SOURCE
        return PayloadType.ENRICHMENT

    def _refetch(
        self, payload_id: str, *, fallback: DatastreamProfile
    ) -> FedoraPayload:
        """Re-read authoritative metadata, falling back to the write response."""
        try:
            return self._fetch_payload(payload_id)
        except (NotFoundError, BackendError):
            _LOGGER.warning(
                "Payload re-fetch failed; using write response: payload_id=%s",
                payload_id,
                exc_info=True,
            )
            return FedoraPayload.from_profile(
                session=self._session,
                profile=fallback,
                payload_id=payload_id,
                backend_pid=self._backend_pid,
            )

    def _fetch_payload(self, payload_id: str) -> FedoraPayload:
        """Read current datastream metadata into a fresh payload view."""
        ds_id = self._translator.to_backend_datastream_id(payload_id)
        try:
            profile = self._session.client.get_datastream(
                pid=self._backend_pid, ds_id=ds_id
            )
        except FedoraAdapterNotFoundError as exc:
            raise NotFoundError(
                f"payload '{payload_id}' does not exist in the repository"
            ) from exc
        except FedoraAdapterError as exc:
            raise BackendError(f"failed to read payload '{payload_id}': {exc}") from exc
        return FedoraPayload.from_profile(
            session=self._session,
            profile=profile,
            payload_id=payload_id,
            backend_pid=self._backend_pid,
        )

    def _load_metadata(self) -> dict[str, str]:
        if CORE_METADATA_PAYLOAD_ID not in self._manifest:
            return {}
        ds_id = self._translator.to_backend_datastream_id(CORE_METADATA_PAYLOAD_ID)
        try:
            stream = self._session.open_stream(self._backend_pid, ds_id)
        except OSError as exc:
            raise BackendError(
                f"failed to read metadata of object '{self._id}': {exc}"
            ) from exc
        try:
            raw = stream.read()
        except OSError as exc:
            raise BackendError(
                f"failed to read metadata of object '{self._id}': {exc}"
            ) from exc
        finally:
            stream.close()
            self._session.release(self._backend_pid, ds_id)
        return parse_properties((raw or b"").decode("utf-8"))

    def __repr__(self) -> str:
        return f"FedoraDigitalObject(id={self._id!r}, backend_id={self._backend_pid!r})"


def _payload_id_for(profile: DatastreamProfile) -> str | None:
    """Resolve the caller payload id stored on one datastream profile."""
    if profile.ds_id == DUBLIN_CORE_DATASTREAM_ID:
        return None
    if profile.ds_id == CORE_METADATA_PAYLOAD_ID:
        return CORE_METADATA_PAYLOAD_ID
    if len(profile.alt_ids) < 2:
        _LOGGER.warning(
            "Skipping datastream without payload id: ds_id=%s", profile.ds_id
        )
        return None
    return profile.alt_ids[1]


def _upload(client: FedoraAdapter, staged: StagedUpload) -> str:
    """Upload a staged file; the file is discarded once the attempt ends."""
    try:
        return client.upload(path=staged.path, mime_type=staged.mime_type)
    finally:
        staged.discard()


def _require_id(value: str | None, *, what: str) -> None:
    if value is None or value == "":
        raise InvalidArgumentError(f"{what} is required")


def parse_properties(text: str) -> dict[str, str]:
    """Parse ``key=value`` property text (``#``/``!`` comments, ``\\`` escapes)."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.lstrip()
        if line == "" or line[0] in "#!":
            continue
        key_chars: list[str] = []
        index = 0
        while index < len(line):
            char = line[index]
            if char == "\\" and index + 1 < len(line):
                key_chars.append(line[index : index + 2])
                index += 2
                continue
            if char in "=:":
                break
            key_chars.append(char)
            index += 1
        key = _unescape("".join(key_chars).rstrip())
        value = _unescape(line[index + 1 :].lstrip()) if index < len(line) else ""
        values[key] = value
    return values


def format_properties(values: Mapping[str, str]) -> str:
    """Render properties as sorted ``key=value`` lines."""
    lines = [
        f"{_escape(key, is_key=True)}={_escape(value, is_key=False)}"
        for key, value in sorted(values.items())
    ]
    return "\n".join(lines) + ("\n" if lines else "")


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "f": "\f"}


def _unescape(text: str) -> str:
    out: list[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char == "\\" and index + 1 < len(text):
            following = text[index + 1]
            out.append(_ESCAPES.get(following, following))
            index += 2
            continue
        out.append(char)
        index += 1
    return "".join(out)


def _escape(text: str, *, is_key: bool) -> str:
    out: list[str] = []
    for char in text:
        if char == "\\":
            out.append("\\\\")
        elif char == "\n":
            out.append("\\n")
        elif char == "\t":
            out.append("\\t")
        elif char == "\r":
            out.append("\\r")
        elif char in "=:#!" or (is_key and char == " "):
            out.append("\\" + char)
        else:
            out.append(char)
    return "".join(out)
