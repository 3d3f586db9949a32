"""Repository-backed payload storage: object lifecycle and enumeration."""

from __future__ import annotations

from importlib import resources as importlib_resources
from pathlib import Path
from xml.sax.saxutils import escape as xml_escape

from packages.storage_shared.config import StorageSettings
from packages.storage_shared.logging import (
    get_logger,
    public_api_logged,
    repository_context,
)
from resources.adapters.fedora import (
    FedoraAdapterConflictError,
    FedoraAdapterError,
    FedoraAdapterNotFoundError,
)
from services.state.payload_storage.config import (
    SERVICE_COMPONENT_ID,
    PayloadStorageSettings,
    resolve_backend_settings,
    resolve_payload_storage_settings,
)
from services.state.payload_storage.digital_object import FedoraDigitalObject
from services.state.payload_storage.domain import (
    FOXML_FORMAT,
    OBJECT_ADDED_LOG_MESSAGE,
    OBJECT_DELETED_LOG_MESSAGE,
    PLUGIN_ID,
    PLUGIN_NAME,
    TEMPLATE_OID_TOKEN,
    TEMPLATE_PID_TOKEN,
)
from services.state.payload_storage.errors import (
    AlreadyExistsError,
    BackendError,
    ConfigurationError,
    IdentifierMismatchError,
    InvalidArgumentError,
    NotFoundError,
)
from services.state.payload_storage.identifiers import IdentifierTranslator
from services.state.payload_storage.service import PayloadStorage
from services.state.payload_storage.session import AdapterFactory, FedoraSession

_LOGGER = get_logger(__name__)

_TEMPLATE_RESOURCE = "templates/foxml_template.xml"


def load_object_template(path: Path | None = None) -> str:
    """Load the object-creation template, defaulting to the bundled one."""
    if path is None:
        return (
            importlib_resources.files("services.state.payload_storage")
            .joinpath(_TEMPLATE_RESOURCE)
            .read_text(encoding="utf-8")
        )
    if not path.is_file():
        raise ConfigurationError(f"object template does not exist: '{path}'")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"unable to read object template '{path}'") from exc


def render_object_template(template: str, *, pid: str, oid: str) -> bytes:
    """Substitute the repository PID and caller id into the template."""
    rendered = template.replace(TEMPLATE_PID_TOKEN, pid)
    rendered = rendered.replace(TEMPLATE_OID_TOKEN, xml_escape(oid, {'"': "&quot;"}))
    return rendered.encode("utf-8")


class FedoraStorage(PayloadStorage):
    """Payload storage over one connected repository session."""

    def __init__(
        self,
        *,
        session: FedoraSession,
        template: str,
        settings: PayloadStorageSettings | None = None,
    ) -> None:
        self._session = session
        self._template = template
        self._settings = settings or PayloadStorageSettings()
        self._translator = IdentifierTranslator(namespace=session.namespace)

    @classmethod
    def from_settings(
        cls,
        settings: StorageSettings,
        *,
        adapter_factory: AdapterFactory | None = None,
    ) -> FedoraStorage:
        """Build, initialize and connect storage from typed settings."""
        service_settings = resolve_payload_storage_settings(settings)
        template = load_object_template(service_settings.object_template_path)

        session = FedoraSession(adapter_factory=adapter_factory)
        session.initialize(resolve_backend_settings(settings))
        try:
            session.connect()
        except Exception:
            session.close()
            raise
        return cls(session=session, template=template, settings=service_settings)

    @property
    def plugin_id(self) -> str:
        return PLUGIN_ID

    @property
    def plugin_name(self) -> str:
        return PLUGIN_NAME

    @property
    def session(self) -> FedoraSession:
        return self._session

    @property
    def translator(self) -> IdentifierTranslator:
        return self._translator

    def fedora_version(self) -> str | None:
        """Return the negotiated repository server version."""
        return self._session.version

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("oid",),
    )
    def create_object(self, oid: str) -> FedoraDigitalObject:
        """Ingest a new object rendered from the template.

        Fails when the object already exists or the repository assigns a
        different PID than the one derived from ``oid``.
        """
        _require_oid(oid)
        pid = self._translator.to_backend_object_id(oid)
        content = render_object_template(self._template, pid=pid, oid=oid)

        with self._session.exclusive() as client:
            try:
                existing = client.get_object_xml(pid=pid)
            except FedoraAdapterError:
                existing = b""
            if existing:
                raise AlreadyExistsError(f"object '{oid}' already exists")

            try:
                assigned = client.ingest(
                    content=content,
                    format_uri=FOXML_FORMAT,
                    log_message=OBJECT_ADDED_LOG_MESSAGE,
                )
            except FedoraAdapterConflictError as exc:
                raise AlreadyExistsError(f"object '{oid}' already exists") from exc
            except FedoraAdapterError as exc:
                raise BackendError(f"failed to ingest object '{oid}': {exc}") from exc

            if assigned != pid:
                with repository_context(object_id=oid, backend_pid=pid):
                    _LOGGER.error(
                        "PID mismatch during creation: requested=%s assigned=%s",
                        pid,
                        assigned,
                    )
                try:
                    client.purge_object(
                        pid=assigned, log_message=OBJECT_DELETED_LOG_MESSAGE
                    )
                except FedoraAdapterError:
                    _LOGGER.error(
                        "Compensating purge failed: pid=%s", assigned, exc_info=True
                    )
                raise IdentifierMismatchError(requested=pid, assigned=assigned)

        return self._materialize(oid, pid)

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("oid",),
    )
    def get_object(self, oid: str) -> FedoraDigitalObject:
        """Return an existing object without re-ingesting it."""
        _require_oid(oid)
        pid = self._translator.to_backend_object_id(oid)
        try:
            data = self._session.client.get_object_xml(pid=pid)
        except FedoraAdapterNotFoundError as exc:
            raise NotFoundError(f"object '{oid}' not found") from exc
        except FedoraAdapterError as exc:
            raise BackendError(f"failed to read object '{oid}': {exc}") from exc
        if not data:
            raise NotFoundError(f"object '{oid}' not found")
        return self._materialize(oid, pid)

    @public_api_logged(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("oid",),
    )
    def remove_object(self, oid: str) -> None:
        """Purge one object from the repository."""
        _require_oid(oid)
        pid = self._translator.to_backend_object_id(oid)
        try:
            with self._session.exclusive() as client:
                client.purge_object(pid=pid, log_message=OBJECT_DELETED_LOG_MESSAGE)
        except FedoraAdapterError as exc:
            raise BackendError(f"failed to purge object '{oid}': {exc}") from exc

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def list_object_ids(self) -> set[str]:
        """Return caller ids of every object in the namespace.

        Search failures raise ``BackendError`` so an unreadable repository is
        never reported as an empty one.
        """
        _LOGGER.info("Complete storage object id list requested")
        terms = self._translator.search_terms()
        page_size = self._settings.search_page_size
        object_ids: set[str] = set()
        client = self._session.client
        try:
            page = client.find_objects(terms=terms, max_results=page_size)
            while True:
                object_ids.update(row.label for row in page.rows if row.label)
                if not page.has_next:
                    break
                page = client.find_objects(
                    terms=terms,
                    max_results=page_size,
                    session_token=page.session_token,
                )
        except FedoraAdapterError as exc:
            _LOGGER.error("Repository search failed", exc_info=True)
            raise BackendError(f"repository search failed: {exc}") from exc
        return object_ids

    @public_api_logged(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def shutdown(self) -> None:
        """Close the repository session."""
        self._session.close()

    def _materialize(self, oid: str, pid: str) -> FedoraDigitalObject:
        return FedoraDigitalObject.materialize(
            session=self._session,
            translator=self._translator,
            oid=oid,
            backend_pid=pid,
            staging_dir=self._settings.staging_dir,
        )


def _require_oid(oid: str | None) -> None:
    if oid is None or oid == "":
        raise InvalidArgumentError("object id is required")
