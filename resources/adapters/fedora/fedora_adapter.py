"""In-process Fedora adapter implementation over the Fedora 3.x REST API."""

from __future__ import annotations

import io
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib import parse as urllib_parse
from xml.etree import ElementTree

import httpx

from packages.storage_shared.http import (
    HttpClient,
    HttpInvalidUrlError,
    HttpRequestError,
    HttpStatusError,
)
from packages.storage_shared.logging import get_logger, public_api_logged
from resources.adapters.fedora.adapter import (
    DatastreamProfile,
    FedoraAdapter,
    FedoraAdapterAccessError,
    FedoraAdapterConflictError,
    FedoraAdapterDependencyError,
    FedoraAdapterInternalError,
    FedoraAdapterInvalidUrlError,
    FedoraAdapterNotFoundError,
    RepositoryInfo,
    SearchPage,
    SearchRow,
)
from resources.adapters.fedora.config import RESOURCE_COMPONENT_ID, FedoraAdapterSettings

_LOGGER = get_logger(__name__)


class DatastreamContent(io.RawIOBase):
    """Readable raw byte stream over one streaming dissemination response."""

    def __init__(self, *, response: httpx.Response) -> None:
        super().__init__()
        self._response = response
        self._chunks = response.iter_bytes()
        self._pending = b""
        self._exhausted = False
        self._failed = False

    @property
    def mime_type(self) -> str:
        """Return the content type the server declared for this stream."""
        return self._response.headers.get("content-type", "")

    @property
    def exhausted(self) -> bool:
        """Return whether the response body has been fully consumed."""
        return self._exhausted or self._response.is_closed

    @property
    def failed(self) -> bool:
        """Return whether reading the response body raised an error."""
        return self._failed

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed datastream content")
        while not self._pending and not self._exhausted:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                self._exhausted = True
            except (httpx.HTTPError, httpx.StreamError) as exc:
                self._failed = True
                raise OSError(f"datastream read failed: {exc}") from exc

        view = memoryview(buffer).cast("B")
        size = min(len(view), len(self._pending))
        view[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


class FedoraRestAdapter(FedoraAdapter):
    """Fedora adapter backed by HTTP calls to the repository REST API."""

    def __init__(
        self,
        *,
        settings: FedoraAdapterSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._settings = settings
        with _mapped_errors():
            self._http = HttpClient(
                base_url=settings.base_url,
                timeout_seconds=settings.timeout_seconds,
                auth=(settings.username, settings.password),
                transport=transport,
            )

    @public_api_logged(logger=_LOGGER, component_id=RESOURCE_COMPONENT_ID)
    def describe_repository(self) -> RepositoryInfo:
        """Return repository identity including the server version."""
        with _mapped_errors():
            response = self._http.get("describe", params={"xml": "true"})
        root = _parse_xml(response.content, what="describe")
        version = _child_text(root, "repositoryVersion")
        if version == "":
            raise FedoraAdapterInternalError(
                "fedora describe response missing repositoryVersion"
            )
        return RepositoryInfo(
            name=_child_text(root, "repositoryName"),
            version=version,
            base_url=_child_text(root, "repositoryBaseURL"),
        )

    @public_api_logged(
        logger=_LOGGER, component_id=RESOURCE_COMPONENT_ID, id_fields=("pid",)
    )
    def get_object_xml(self, *, pid: str) -> bytes:
        """Return the serialized object XML for one PID."""
        with _mapped_errors():
            response = self._http.get(f"objects/{_quote(pid)}/objectXML")
        return response.content

    @public_api_logged(logger=_LOGGER, component_id=RESOURCE_COMPONENT_ID)
    def find_objects(
        self, *, terms: str, max_results: int, session_token: str = ""
    ) -> SearchPage:
        """Run one field search page, resuming from ``session_token`` if given."""
        params = {
            "terms": terms,
            "maxResults": str(max_results),
            "resultFormat": "xml",
            "pid": "true",
            "label": "true",
        }
        if session_token:
            params["sessionToken"] = session_token
        with _mapped_errors():
            response = self._http.get("objects", params=params)
        root = _parse_xml(response.content, what="findObjects")

        rows: list[SearchRow] = []
        for element in _iter_local(root, "objectFields"):
            pid = _child_text(element, "pid")
            if pid == "":
                continue
            rows.append(SearchRow(pid=pid, label=_child_text(element, "label")))

        token = ""
        for session in _iter_local(root, "listSession"):
            token = _child_text(session, "token")
        return SearchPage(rows=tuple(rows), session_token=token)

    @public_api_logged(logger=_LOGGER, component_id=RESOURCE_COMPONENT_ID)
    def ingest(self, *, content: bytes, format_uri: str, log_message: str) -> str:
        """Ingest one serialized object and return the PID the server assigned."""
        with _mapped_errors():
            response = self._http.post(
                "objects/new",
                params={"format": format_uri, "logMessage": log_message},
                content=content,
                headers={"Content-Type": "text/xml; charset=utf-8"},
            )
        pid = response.text.strip()
        if pid == "":
            raise FedoraAdapterInternalError("fedora ingest response missing PID")
        return pid

    @public_api_logged(
        logger=_LOGGER, component_id=RESOURCE_COMPONENT_ID, id_fields=("pid",)
    )
    def purge_object(self, *, pid: str, log_message: str) -> None:
        """Permanently remove one object."""
        with _mapped_errors():
            self._http.delete(
                f"objects/{_quote(pid)}", params={"logMessage": log_message}
            )

    @public_api_logged(
        logger=_LOGGER,
        component_id=RESOURCE_COMPONENT_ID,
        id_fields=("pid", "ds_id"),
    )
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
        params = {
            "controlGroup": control_group,
            "dsLocation": ds_location,
            "altIDs": _join_alt_ids(alt_ids),
            "dsLabel": ds_label,
            "versionable": _flag(versionable),
            "dsState": ds_state,
            "mimeType": mime_type,
            "logMessage": log_message,
        }
        with _mapped_errors():
            response = self._http.post(_datastream_endpoint(pid, ds_id), params=params)
        return self._profile_or_fetch(response, pid=pid, ds_id=ds_id)

    @public_api_logged(
        logger=_LOGGER,
        component_id=RESOURCE_COMPONENT_ID,
        id_fields=("pid", "ds_id"),
    )
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
        params = {
            "altIDs": _join_alt_ids(alt_ids),
            "dsLabel": ds_label,
            "versionable": _flag(versionable),
            "mimeType": mime_type,
            "logMessage": log_message,
        }
        if ds_location is not None:
            params["dsLocation"] = ds_location
        with _mapped_errors():
            response = self._http.put(_datastream_endpoint(pid, ds_id), params=params)
        return self._profile_or_fetch(response, pid=pid, ds_id=ds_id)

    @public_api_logged(
        logger=_LOGGER,
        component_id=RESOURCE_COMPONENT_ID,
        id_fields=("pid", "ds_id"),
    )
    def purge_datastream(self, *, pid: str, ds_id: str, log_message: str) -> None:
        """Permanently remove one datastream."""
        with _mapped_errors():
            self._http.delete(
                _datastream_endpoint(pid, ds_id), params={"logMessage": log_message}
            )

    @public_api_logged(
        logger=_LOGGER,
        component_id=RESOURCE_COMPONENT_ID,
        id_fields=("pid", "ds_id"),
    )
    def get_datastream(self, *, pid: str, ds_id: str) -> DatastreamProfile:
        """Return the current profile of one datastream."""
        with _mapped_errors():
            response = self._http.get(
                _datastream_endpoint(pid, ds_id), params={"format": "xml"}
            )
        profiles = _parse_profiles(response.content, what="getDatastream")
        if len(profiles) == 0:
            raise FedoraAdapterInternalError(
                "fedora datastream response missing datastreamProfile"
            )
        return profiles[0]

    @public_api_logged(
        logger=_LOGGER, component_id=RESOURCE_COMPONENT_ID, id_fields=("pid",)
    )
    def get_datastreams(self, *, pid: str) -> list[DatastreamProfile]:
        """Return current profiles of every datastream on one object."""
        with _mapped_errors():
            response = self._http.get(
                f"objects/{_quote(pid)}/datastreams",
                params={"format": "xml", "profiles": "true"},
            )
        return _parse_profiles(response.content, what="getDatastreams", pid=pid)

    @public_api_logged(
        logger=_LOGGER,
        component_id=RESOURCE_COMPONENT_ID,
        id_fields=("pid", "ds_id"),
    )
    def get_datastream_history(
        self, *, pid: str, ds_id: str
    ) -> list[DatastreamProfile]:
        """Return every stored version of one datastream, newest first."""
        with _mapped_errors():
            response = self._http.get(
                f"{_datastream_endpoint(pid, ds_id)}/history",
                params={"format": "xml"},
            )
        profiles = _parse_profiles(
            response.content, what="getDatastreamHistory", pid=pid
        )
        return sorted(profiles, key=_created_sort_key, reverse=True)

    @public_api_logged(
        logger=_LOGGER,
        component_id=RESOURCE_COMPONENT_ID,
        id_fields=("pid", "ds_id"),
    )
    def open_datastream_content(self, *, pid: str, ds_id: str) -> DatastreamContent:
        """Open a streaming read of one datastream's content."""
        with _mapped_errors():
            response = self._http.stream(
                "GET", f"{_datastream_endpoint(pid, ds_id)}/content"
            )
        return DatastreamContent(response=response)

    @public_api_logged(logger=_LOGGER, component_id=RESOURCE_COMPONENT_ID)
    def upload(self, *, path: Path, mime_type: str) -> str:
        """Upload one local file to temporary storage and return its location."""
        with path.open("rb") as handle, _mapped_errors():
            response = self._http.post(
                "upload", files={"file": (path.name, handle, mime_type)}
            )
        location = response.text.strip()
        if location == "":
            raise FedoraAdapterInternalError("fedora upload response missing location")
        return location

    def close(self) -> None:
        """Release transport resources."""
        self._http.close()

    def _profile_or_fetch(
        self, response: httpx.Response, *, pid: str, ds_id: str
    ) -> DatastreamProfile:
        """Parse a profile from a write response, fetching it when absent."""
        if response.content.strip():
            profiles = _parse_profiles(response.content, what="datastream write")
            if profiles:
                return profiles[0]
        return self.get_datastream(pid=pid, ds_id=ds_id)


@contextmanager
def _mapped_errors() -> Iterator[None]:
    """Map shared HTTP client failures into adapter-specific exceptions."""
    try:
        yield
    except HttpStatusError as exc:
        raise _status_exception(exc) from None
    except HttpInvalidUrlError as exc:
        raise FedoraAdapterInvalidUrlError(str(exc)) from None
    except HttpRequestError as exc:
        if not exc.retryable:
            raise FedoraAdapterInvalidUrlError(str(exc)) from None
        raise FedoraAdapterDependencyError(
            f"fedora adapter request failed: {exc.cause or exc}"
        ) from None


def _status_exception(exc: HttpStatusError) -> Exception:
    """Map one HTTP status failure into an adapter exception instance."""
    status = exc.status_code
    message = _status_message(exc)
    if status in {500, 502, 503, 504, 429, 408}:
        return FedoraAdapterDependencyError(message)
    if status in {401, 403}:
        return FedoraAdapterAccessError(message)
    if status == 404:
        return FedoraAdapterNotFoundError(message)
    if status == 409:
        return FedoraAdapterConflictError(message)
    return FedoraAdapterInternalError(message)


def _status_message(exc: HttpStatusError) -> str:
    """Extract a best-effort error message from an HTTP status failure."""
    body = exc.response_body.strip()
    if body and not body.startswith("<"):
        return f"{exc.message}: {body[:200]}"
    return exc.message


def _quote(value: str) -> str:
    """Percent-encode one path segment, keeping PID colons readable."""
    return urllib_parse.quote(value, safe=":")


def _datastream_endpoint(pid: str, ds_id: str) -> str:
    """Build the datastream endpoint path for one PID and datastream id."""
    return f"objects/{_quote(pid)}/datastreams/{_quote(ds_id)}"


def _join_alt_ids(alt_ids: Sequence[str]) -> str:
    """Join alternate ids into the space-separated form the API expects."""
    return " ".join(str(alt_id) for alt_id in alt_ids)


def _flag(value: bool) -> str:
    """Render one boolean query flag."""
    return "true" if value else "false"


def _parse_xml(payload: bytes, *, what: str) -> ElementTree.Element:
    """Parse one XML response body."""
    try:
        return ElementTree.fromstring(payload)
    except ElementTree.ParseError:
        raise FedoraAdapterInternalError(
            f"fedora {what} response is not valid XML"
        ) from None


def _local(tag: str) -> str:
    """Return the local part of a possibly namespace-qualified tag."""
    return tag.rsplit("}", maxsplit=1)[-1]


def _iter_local(root: ElementTree.Element, name: str) -> Iterator[ElementTree.Element]:
    """Yield descendants (and root) whose local tag name matches ``name``."""
    for element in root.iter():
        if _local(element.tag) == name:
            yield element


def _child_text(element: ElementTree.Element, name: str) -> str:
    """Return stripped text of the first descendant named ``name``."""
    for child in _iter_local(element, name):
        if child is element:
            continue
        return (child.text or "").strip()
    return ""


def _parse_profiles(
    payload: bytes, *, what: str, pid: str = ""
) -> list[DatastreamProfile]:
    """Parse every ``datastreamProfile`` element in one response body."""
    root = _parse_xml(payload, what=what)
    default_pid = root.get("pid", pid)
    default_ds_id = root.get("dsID", "")
    return [
        _profile_from_element(
            element, default_pid=default_pid, default_ds_id=default_ds_id
        )
        for element in _iter_local(root, "datastreamProfile")
    ]


def _profile_from_element(
    element: ElementTree.Element, *, default_pid: str, default_ds_id: str
) -> DatastreamProfile:
    """Map one ``datastreamProfile`` element into a typed DTO."""
    values: dict[str, str] = {}
    alt_ids: list[str] = []
    for child in element:
        name = _local(child.tag)
        text = (child.text or "").strip()
        if name == "dsAltID":
            if text:
                alt_ids.extend(text.split())
            continue
        values.setdefault(name, text)

    ds_id = element.get("dsID") or values.get("dsID") or default_ds_id
    if ds_id == "":
        raise FedoraAdapterInternalError("fedora datastream profile missing dsID")
    return DatastreamProfile(
        pid=element.get("pid") or default_pid,
        ds_id=ds_id,
        label=values.get("dsLabel", ""),
        version_id=values.get("dsVersionID", ""),
        created_at=_parse_datetime(values.get("dsCreateDate", "")),
        state=values.get("dsState", ""),
        mime_type=values.get("dsMIME", ""),
        control_group=values.get("dsControlGroup", ""),
        size=_parse_int(values.get("dsSize", "")),
        versionable=values.get("dsVersionable", "").lower() == "true",
        location=values.get("dsLocation", ""),
        alt_ids=tuple(alt_ids),
    )


def _parse_datetime(value: str) -> datetime | None:
    """Parse one ISO-8601 repository timestamp."""
    if value == "":
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        _LOGGER.warning("Unparseable datastream timestamp: value=%s", value)
        return None


def _parse_int(value: str) -> int | None:
    """Parse one integer field, returning ``None`` when absent or invalid."""
    try:
        return int(value)
    except ValueError:
        return None


def _created_sort_key(profile: DatastreamProfile) -> float:
    """Order profiles by creation instant, undated versions last."""
    if profile.created_at is None:
        return float("-inf")
    return profile.created_at.timestamp()
