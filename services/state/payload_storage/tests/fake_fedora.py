"""In-memory repository adapter fake for payload storage behavior tests."""

from __future__ import annotations

import io
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from resources.adapters.fedora import (
    DatastreamProfile,
    FedoraAdapterAccessError,
    FedoraAdapterConflictError,
    FedoraAdapterDependencyError,
    FedoraAdapterNotFoundError,
    FedoraAdapterSettings,
    RepositoryInfo,
    SearchPage,
    SearchRow,
)
from services.state.payload_storage.config import PayloadStorageSettings
from services.state.payload_storage.session import FedoraSession
from services.state.payload_storage.storage import FedoraStorage, load_object_template

_EPOCH = datetime(2024, 1, 1, tzinfo=UTC)


@dataclass
class _Version:
    content: bytes
    created_at: datetime


@dataclass
class _Datastream:
    label: str
    mime_type: str
    alt_ids: tuple[str, ...]
    control_group: str = "M"
    state: str = "A"
    versions: list[_Version] = field(default_factory=list)


@dataclass
class _Object:
    label: str
    xml: bytes
    datastreams: dict[str, _Datastream] = field(default_factory=dict)


class FakeStream(io.BytesIO):
    """Byte stream fake reporting exhaustion like the REST content stream."""

    def __init__(self, content: bytes) -> None:
        super().__init__(content)
        self._size = len(content)
        self.failed = False

    @property
    def exhausted(self) -> bool:
        return self.closed or self.tell() >= self._size


class FakeFedoraAdapter:
    """Thread-safe in-memory implementation of the repository adapter protocol."""

    def __init__(
        self,
        *,
        version: str = "3.6.2",
        probe_xml: bytes = b"<digitalObject/>",
        assign_pid: str | None = None,
        op_delay_seconds: float = 0.0,
    ) -> None:
        self.version = version
        self.probe_xml = probe_xml
        self.assign_pid = assign_pid
        self.op_delay_seconds = op_delay_seconds
        self.objects: dict[str, _Object] = {}
        self.uploads: dict[str, bytes] = {}
        self.calls: list[tuple[str, dict[str, object]]] = []
        self.fail: dict[str, Exception] = {}
        self.closed = False
        self._lock = threading.Lock()
        self._clock = 0
        self._upload_seq = 0
        self._active = 0
        self.max_concurrent_writes = 0
        self.write_log: list[tuple[str, str, int]] = []

    def _record(self, name: str, **kwargs: object) -> None:
        with self._lock:
            self.calls.append((name, kwargs))
        failure = self.fail.get(name)
        if failure is not None:
            raise failure

    def _tick(self) -> datetime:
        with self._lock:
            self._clock += 1
            return _EPOCH + timedelta(seconds=self._clock)

    def _begin_write(self, name: str) -> None:
        with self._lock:
            self._active += 1
            self.max_concurrent_writes = max(self.max_concurrent_writes, self._active)
            self.write_log.append(("begin", name, threading.get_ident()))
        if self.op_delay_seconds:
            time.sleep(self.op_delay_seconds)

    def _end_write(self, name: str) -> None:
        with self._lock:
            self._active -= 1
            self.write_log.append(("end", name, threading.get_ident()))

    def _object(self, pid: str) -> _Object:
        found = self.objects.get(pid)
        if found is None:
            raise FedoraAdapterNotFoundError(f"object {pid} not found")
        return found

    def _datastream(self, pid: str, ds_id: str) -> _Datastream:
        found = self._object(pid).datastreams.get(ds_id)
        if found is None:
            raise FedoraAdapterNotFoundError(f"datastream {pid}/{ds_id} not found")
        return found

    def _profile(
        self, pid: str, ds_id: str, datastream: _Datastream, version: _Version
    ) -> DatastreamProfile:
        index = datastream.versions.index(version)
        return DatastreamProfile(
            pid=pid,
            ds_id=ds_id,
            label=datastream.label,
            version_id=f"{ds_id}.{index}",
            created_at=version.created_at,
            state=datastream.state,
            mime_type=datastream.mime_type,
            control_group=datastream.control_group,
            size=len(version.content),
            versionable=False,
            location=f"{pid}+{ds_id}+{ds_id}.{index}",
            alt_ids=datastream.alt_ids,
        )

    def _current_profile(self, pid: str, ds_id: str) -> DatastreamProfile:
        datastream = self._datastream(pid, ds_id)
        return self._profile(pid, ds_id, datastream, datastream.versions[-1])

    def describe_repository(self) -> RepositoryInfo:
        self._record("describe_repository")
        return RepositoryInfo(name="Fake Fedora", version=self.version)

    def get_object_xml(self, *, pid: str) -> bytes:
        self._record("get_object_xml", pid=pid)
        if pid == "fedora-system:FedoraObject-3.0":
            if not self.probe_xml:
                raise FedoraAdapterAccessError("probe denied")
            return self.probe_xml
        return self._object(pid).xml

    def find_objects(
        self, *, terms: str, max_results: int, session_token: str = ""
    ) -> SearchPage:
        self._record(
            "find_objects",
            terms=terms,
            max_results=max_results,
            session_token=session_token,
        )
        prefix = terms.rstrip("*")
        rows = [
            SearchRow(pid=pid, label=obj.label)
            for pid, obj in sorted(self.objects.items())
            if pid.startswith(prefix)
        ]
        start = int(session_token or "0")
        end = start + max_results
        token = str(end) if end < len(rows) else ""
        return SearchPage(rows=tuple(rows[start:end]), session_token=token)

    def ingest(self, *, content: bytes, format_uri: str, log_message: str) -> str:
        self._record("ingest", format_uri=format_uri, log_message=log_message)
        text = content.decode("utf-8")
        pid = self.assign_pid or text.split('PID="', 1)[1].split('"', 1)[0]
        label = text.split('model#label" VALUE="', 1)[1].split('"', 1)[0]
        if pid in self.objects:
            raise FedoraAdapterConflictError(f"object {pid} exists")
        self.objects[pid] = _Object(label=_unescape_xml(label), xml=content)
        self.objects[pid].datastreams["DC"] = _Datastream(
            label="Dublin Core Record",
            mime_type="text/xml",
            alt_ids=(),
            control_group="X",
            versions=[_Version(content=b"<dc/>", created_at=self._tick())],
        )
        return pid

    def purge_object(self, *, pid: str, log_message: str) -> None:
        self._record("purge_object", pid=pid, log_message=log_message)
        self._object(pid)
        del self.objects[pid]

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
        self._begin_write("add_datastream")
        try:
            self._record(
                "add_datastream",
                pid=pid,
                ds_id=ds_id,
                ds_location=ds_location,
                alt_ids=tuple(alt_ids),
                ds_label=ds_label,
                mime_type=mime_type,
                versionable=versionable,
                control_group=control_group,
                ds_state=ds_state,
                log_message=log_message,
            )
            obj = self._object(pid)
            if ds_id in obj.datastreams:
                raise FedoraAdapterConflictError(f"datastream {ds_id} exists")
            obj.datastreams[ds_id] = _Datastream(
                label=ds_label,
                mime_type=mime_type,
                alt_ids=tuple(alt_ids),
                control_group=control_group,
                state=ds_state,
                versions=[
                    _Version(
                        content=self._take_upload(ds_location),
                        created_at=self._tick(),
                    )
                ],
            )
            return self._current_profile(pid, ds_id)
        finally:
            self._end_write("add_datastream")

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
        self._begin_write("modify_datastream")
        try:
            self._record(
                "modify_datastream",
                pid=pid,
                ds_id=ds_id,
                ds_location=ds_location,
                alt_ids=tuple(alt_ids),
                ds_label=ds_label,
                mime_type=mime_type,
                versionable=versionable,
                log_message=log_message,
            )
            datastream = self._datastream(pid, ds_id)
            datastream.label = ds_label
            datastream.mime_type = mime_type
            datastream.alt_ids = tuple(alt_ids)
            if ds_location is not None:
                datastream.versions.append(
                    _Version(
                        content=self._take_upload(ds_location),
                        created_at=self._tick(),
                    )
                )
            return self._current_profile(pid, ds_id)
        finally:
            self._end_write("modify_datastream")

    def purge_datastream(self, *, pid: str, ds_id: str, log_message: str) -> None:
        self._record("purge_datastream", pid=pid, ds_id=ds_id, log_message=log_message)
        self._datastream(pid, ds_id)
        del self.objects[pid].datastreams[ds_id]

    def get_datastream(self, *, pid: str, ds_id: str) -> DatastreamProfile:
        self._record("get_datastream", pid=pid, ds_id=ds_id)
        return self._current_profile(pid, ds_id)

    def get_datastreams(self, *, pid: str) -> list[DatastreamProfile]:
        self._record("get_datastreams", pid=pid)
        obj = self._object(pid)
        return [
            self._profile(pid, ds_id, datastream, datastream.versions[-1])
            for ds_id, datastream in obj.datastreams.items()
        ]

    def get_datastream_history(
        self, *, pid: str, ds_id: str
    ) -> list[DatastreamProfile]:
        self._record("get_datastream_history", pid=pid, ds_id=ds_id)
        datastream = self._datastream(pid, ds_id)
        return [
            self._profile(pid, ds_id, datastream, version)
            for version in reversed(datastream.versions)
        ]

    def open_datastream_content(self, *, pid: str, ds_id: str) -> FakeStream:
        self._record("open_datastream_content", pid=pid, ds_id=ds_id)
        return FakeStream(self._datastream(pid, ds_id).versions[-1].content)

    def upload(self, *, path: Path, mime_type: str) -> str:
        self._begin_write("upload")
        try:
            self._record("upload", path=path, mime_type=mime_type)
            content = path.read_bytes()
            with self._lock:
                self._upload_seq += 1
                location = f"uploaded://{self._upload_seq}"
                self.uploads[location] = content
            return location
        finally:
            self._end_write("upload")

    def close(self) -> None:
        self.closed = True

    def _take_upload(self, location: str) -> bytes:
        with self._lock:
            content = self.uploads.pop(location, None)
        if content is None:
            raise FedoraAdapterDependencyError(f"unknown upload {location}")
        return content

    def call_names(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self.calls]

    def calls_named(self, name: str) -> list[dict[str, object]]:
        with self._lock:
            return [kwargs for call_name, kwargs in self.calls if call_name == name]


def _unescape_xml(text: str) -> str:
    return (
        text.replace("&quot;", '"')
        .replace("&lt;", "<")
        .replace("&gt;", ">")
        .replace("&amp;", "&")
    )


def fake_settings(**overrides: object) -> FedoraAdapterSettings:
    """Return adapter settings with credentials present."""
    values: dict[str, object] = {
        "base_url": "http://repo.test/fedora",
        "username": "fedoraAdmin",
        "password": "secret",
        "namespace": "test",
    }
    values.update(overrides)
    return FedoraAdapterSettings.model_validate(values)


def build_storage(
    adapter: FakeFedoraAdapter | None = None,
    *,
    staging_dir: Path | None = None,
    search_page_size: int = 1000,
) -> tuple[FedoraStorage, FakeFedoraAdapter]:
    """Build a connected storage over one fake adapter."""
    fake = adapter or FakeFedoraAdapter()
    session = FedoraSession(adapter_factory=lambda _settings: fake)
    session.initialize(fake_settings())
    session.connect()
    storage = FedoraStorage(
        session=session,
        template=load_object_template(),
        settings=PayloadStorageSettings(
            staging_dir=staging_dir, search_page_size=search_page_size
        ),
    )
    return storage, fake
