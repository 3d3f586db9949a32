"""Repository session: one validated client handle plus an exclusive slot.

A session owns exactly one adapter instance for its lifetime. Reads use the
shared handle directly. Mutating or multi-step sequences check the same handle
out of a capacity-one slot so at most one such sequence reaches the
repository at a time.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from packages.storage_shared.logging import get_logger, public_api_logged
from resources.adapters.fedora import (
    DatastreamStream,
    FedoraAdapter,
    FedoraAdapterAccessError,
    FedoraAdapterError,
    FedoraAdapterNotFoundError,
    FedoraAdapterSettings,
    FedoraRestAdapter,
)
from services.state.payload_storage.config import SERVICE_COMPONENT_ID
from services.state.payload_storage.domain import (
    ACCESS_PROBE_PID,
    SUPPORTED_VERSION_PREFIX,
)
from services.state.payload_storage.errors import (
    AccessError,
    BackendConnectionError,
    ConfigurationError,
    ExclusiveHandleInterruptedError,
    StorageError,
    VersionMismatchError,
)

_LOGGER = get_logger(__name__)

AdapterFactory = Callable[[FedoraAdapterSettings], FedoraAdapter]


def _rest_adapter(settings: FedoraAdapterSettings) -> FedoraAdapter:
    return FedoraRestAdapter(settings=settings)


class FedoraSession:
    """Connection and exclusive-handle manager for one repository."""

    def __init__(self, *, adapter_factory: AdapterFactory | None = None) -> None:
        self._adapter_factory = adapter_factory or _rest_adapter
        self._settings: FedoraAdapterSettings | None = None
        self._client: FedoraAdapter | None = None
        self._version: str | None = None
        self._failure: BackendConnectionError | None = None
        self._closed = False
        self._state_lock = threading.RLock()

        self._slot = threading.Condition(threading.Lock())
        self._holder: int | None = None

        self._streams_lock = threading.Lock()
        self._streams: dict[tuple[str, str], list[DatastreamStream]] = {}

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def initialize(self, settings: FedoraAdapterSettings) -> None:
        """Validate and store connection settings.

        Calling again after the handle is established is a no-op.
        """
        with self._state_lock:
            if self._client is not None:
                return
            if settings.base_url == "":
                raise ConfigurationError("fedora base_url is required")
            if settings.username == "":
                raise ConfigurationError("fedora username is required")
            if settings.password == "":
                raise ConfigurationError("fedora password is required")
            if settings.namespace == "":
                raise ConfigurationError("fedora namespace is required")

            base_url = settings.base_url
            if not base_url.endswith("/"):
                base_url = f"{base_url}/"
            self._settings = settings.model_copy(update={"base_url": base_url})

    @property
    def settings(self) -> FedoraAdapterSettings:
        """Return validated connection settings."""
        if self._settings is None:
            raise ConfigurationError("session has not been initialized")
        return self._settings

    @property
    def namespace(self) -> str:
        """Return the PID namespace objects are created in."""
        return self.settings.namespace

    @property
    def version(self) -> str | None:
        """Return the negotiated server version, once connected."""
        return self._version

    @property
    def connected(self) -> bool:
        return self._client is not None

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def connect(self) -> FedoraAdapter:
        """Establish the shared handle on first use and return it.

        A failed attempt is recorded and re-raised by every later call.
        """
        return self._ensure_connected()

    @property
    def client(self) -> FedoraAdapter:
        """Return the shared handle for reads that may interleave freely."""
        return self._ensure_connected()

    def _ensure_connected(self) -> FedoraAdapter:
        with self._state_lock:
            if self._closed:
                raise StorageError("session is closed")
            if self._client is not None:
                return self._client
            if self._failure is not None:
                raise self._failure

            settings = self.settings
            try:
                client, version = self._establish(settings)
            except BackendConnectionError as exc:
                self._failure = exc
                raise

            self._client = client
            self._version = version
            _LOGGER.info(
                "Connected to repository: base_url=%s version=%s",
                settings.base_url,
                version,
            )
            return client

    def acquire_exclusive(self) -> FedoraAdapter:
        """Block until the exclusive handle is free and check it out."""
        client = self._ensure_connected()
        me = threading.get_ident()
        with self._slot:
            if self._holder == me:
                raise StorageError("exclusive handle is already held by this thread")
            while not self._closed and self._holder is not None:
                self._slot.wait()
            if self._closed:
                raise ExclusiveHandleInterruptedError(
                    "session closed while waiting for the exclusive handle"
                )
            self._holder = me
        return client

    def release_exclusive(self) -> None:
        """Return the exclusive handle; redundant calls are no-ops."""
        me = threading.get_ident()
        with self._slot:
            if self._holder is None:
                return
            if self._holder != me:
                _LOGGER.warning(
                    "Ignoring exclusive handle release from non-holder thread"
                )
                return
            self._holder = None
            self._slot.notify()

    @contextmanager
    def exclusive(self) -> Iterator[FedoraAdapter]:
        """Hold the exclusive handle for the duration of the block."""
        client = self.acquire_exclusive()
        try:
            yield client
        finally:
            self.release_exclusive()

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("pid", "ds_id"),
    )
    def open_stream(self, pid: str, ds_id: str) -> DatastreamStream:
        """Open a tracked byte stream over one datastream's content."""
        client = self.client
        try:
            stream = client.open_datastream_content(pid=pid, ds_id=ds_id)
        except FedoraAdapterError as exc:
            raise OSError(f"unable to open datastream {pid}/{ds_id}: {exc}") from exc
        with self._streams_lock:
            self._streams.setdefault((pid, ds_id), []).append(stream)
        return stream

    def release(self, pid: str, ds_id: str) -> None:
        """Reclaim finished streams for one datastream; active ones are kept."""
        with self._streams_lock:
            streams = self._streams.get((pid, ds_id), [])
            finished = [
                stream
                for stream in streams
                if stream.closed or stream.exhausted or stream.failed
            ]
            for stream in finished:
                streams.remove(stream)
            if not streams:
                self._streams.pop((pid, ds_id), None)
        for stream in finished:
            _close_quietly(stream)

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def close(self) -> None:
        """Cancel waiters, close tracked streams and release the client."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            client = self._client

        with self._slot:
            self._slot.notify_all()

        with self._streams_lock:
            streams = [stream for group in self._streams.values() for stream in group]
            self._streams.clear()
        for stream in streams:
            _close_quietly(stream)

        if client is not None:
            client.close()

    def _establish(
        self, settings: FedoraAdapterSettings
    ) -> tuple[FedoraAdapter, str]:
        """Build the adapter, negotiate the version and probe read access."""
        try:
            client = self._adapter_factory(settings)
        except FedoraAdapterError as exc:
            raise BackendConnectionError(
                f"cannot address repository at {settings.base_url}: {exc}"
            ) from exc

        try:
            version = self._negotiate_version(client, settings)
            self._probe_access(client)
        except BackendConnectionError:
            client.close()
            raise
        return client, version

    @staticmethod
    def _negotiate_version(
        client: FedoraAdapter, settings: FedoraAdapterSettings
    ) -> str:
        try:
            info = client.describe_repository()
        except FedoraAdapterAccessError as exc:
            raise AccessError(f"repository rejected credentials: {exc}") from exc
        except FedoraAdapterError as exc:
            raise BackendConnectionError(
                f"cannot reach repository at {settings.base_url}: {exc}"
            ) from exc

        if not info.version.startswith(SUPPORTED_VERSION_PREFIX):
            raise VersionMismatchError(
                f"unsupported repository version {info.version!r}; "
                f"expected {SUPPORTED_VERSION_PREFIX}x"
            )
        return info.version

    @staticmethod
    def _probe_access(client: FedoraAdapter) -> None:
        try:
            data = client.get_object_xml(pid=ACCESS_PROBE_PID)
        except (FedoraAdapterAccessError, FedoraAdapterNotFoundError) as exc:
            raise AccessError(
                f"read probe of {ACCESS_PROBE_PID} failed: {exc}"
            ) from exc
        except FedoraAdapterError as exc:
            raise BackendConnectionError(
                f"read probe of {ACCESS_PROBE_PID} failed: {exc}"
            ) from exc
        if not data:
            raise AccessError(f"read probe of {ACCESS_PROBE_PID} returned no data")


def _close_quietly(stream: DatastreamStream) -> None:
    try:
        stream.close()
    except OSError:
        _LOGGER.debug("Stream close failed", exc_info=True)
