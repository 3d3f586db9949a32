"""Caller-visible to repository identifier translation.

Object PIDs are ``<namespace>:<md5(oid)>`` and datastream ids are
``DS<md5(payload id)>``. MD5 is fixed-width and not collision-free; two
distinct ids hashing identically would address the same repository record.
"""

from __future__ import annotations

import hashlib

from services.state.payload_storage.domain import CORE_METADATA_PAYLOAD_ID


def escape_payload_id(payload_id: str) -> str:
    """Replace spaces, which cannot appear in stored alternate ids."""
    return payload_id.replace(" ", "_")


def _md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8"), usedforsecurity=False).hexdigest()


class IdentifierTranslator:
    """Deterministic mapping from caller ids to repository ids."""

    def __init__(self, *, namespace: str) -> None:
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    def to_backend_object_id(self, oid: str) -> str:
        """Return the namespaced PID for one caller object id."""
        return f"{self._namespace}:{_md5_hex(oid)}"

    def to_backend_datastream_id(self, payload_id: str) -> str:
        """Return the datastream id for one caller payload id."""
        if payload_id == CORE_METADATA_PAYLOAD_ID:
            return payload_id
        return "DS" + _md5_hex(escape_payload_id(payload_id))

    def search_terms(self) -> str:
        """Return the wildcard search terms covering this namespace."""
        return f"{self._namespace}:*"
