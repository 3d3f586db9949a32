"""Domain constants and value types for payload storage."""

from __future__ import annotations

from enum import StrEnum

PLUGIN_ID = "fedora36"
PLUGIN_NAME = "Fedora Commons 3.6+ Storage Plugin"

# Payload holding object-level properties; its datastream id is not hashed.
CORE_METADATA_PAYLOAD_ID = "TF-OBJ-META"
# Repository-managed Dublin Core record, never exposed as a payload.
DUBLIN_CORE_DATASTREAM_ID = "DC"

FOXML_FORMAT = "info:fedora/fedora-system:FOXML-1.1"
TEMPLATE_PID_TOKEN = "[[PID]]"
TEMPLATE_OID_TOKEN = "[[OID]]"

SUPPORTED_VERSION_PREFIX = "3."
ACCESS_PROBE_PID = "fedora-system:FedoraObject-3.0"

DEFAULT_MIME_TYPE = "application/octet-stream"

OBJECT_ADDED_LOG_MESSAGE = "Fedora3DigitalObject added"
OBJECT_DELETED_LOG_MESSAGE = "Fedora3DigitalObject deleted"
PAYLOAD_ADDED_LOG_MESSAGE = "Fedora3Payload added"
PAYLOAD_DELETED_LOG_MESSAGE = "Fedora3Payload deleted"
PAYLOAD_UPDATED_LOG_MESSAGE = "Fedora3Payload updated"
PAYLOAD_METADATA_LOG_MESSAGE = "Fedora3Payload metadata updated"

MANAGED_CONTROL_GROUP = "M"
ACTIVE_STATE = "A"


class PayloadType(StrEnum):
    """Role of one payload within its object."""

    SOURCE = "Source"
    ENRICHMENT = "Enrichment"
    THUMBNAIL = "Thumbnail"
    PREVIEW = "Preview"
    ALT_PREVIEW = "AltPreview"
    ERROR = "Error"
    ANNOTATION = "Annotation"

    @classmethod
    def parse(cls, value: str | None) -> PayloadType:
        """Parse a stored type tag, defaulting unknown values to enrichment."""
        if value:
            try:
                return cls(value)
            except ValueError:
                pass
        return cls.ENRICHMENT
