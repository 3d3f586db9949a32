"""Unit tests for caller-to-repository identifier translation."""

from __future__ import annotations

import hashlib

from services.state.payload_storage.identifiers import (
    IdentifierTranslator,
    escape_payload_id,
)


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def test_object_id_is_namespaced_hash() -> None:
    """Object PIDs should be ``<namespace>:<md5(oid)>``."""
    translator = IdentifierTranslator(namespace="uuid")

    assert translator.to_backend_object_id("doc-1") == f"uuid:{_md5('doc-1')}"


def test_object_id_is_deterministic() -> None:
    """Repeated translation of one id should always agree."""
    translator = IdentifierTranslator(namespace="uuid")

    first = translator.to_backend_object_id("some/oid with spaces")
    second = translator.to_backend_object_id("some/oid with spaces")

    assert first == second


def test_core_metadata_datastream_id_is_not_hashed() -> None:
    """The core metadata payload id should pass through unchanged."""
    translator = IdentifierTranslator(namespace="uuid")

    assert translator.to_backend_datastream_id("TF-OBJ-META") == "TF-OBJ-META"


def test_datastream_id_is_prefixed_hash() -> None:
    """Payload ids should map to ``DS<md5(payload id)>``."""
    translator = IdentifierTranslator(namespace="uuid")

    assert translator.to_backend_datastream_id("report.pdf") == (
        "DS" + _md5("report.pdf")
    )


def test_datastream_id_escapes_spaces_before_hashing() -> None:
    """Spaces and underscores should address the same datastream."""
    translator = IdentifierTranslator(namespace="uuid")

    spaced = translator.to_backend_datastream_id("my report.pdf")
    escaped = translator.to_backend_datastream_id("my_report.pdf")

    assert spaced == escaped == "DS" + _md5("my_report.pdf")


def test_distinct_payload_ids_map_to_distinct_datastreams() -> None:
    """Different escaped ids should produce different datastream ids."""
    translator = IdentifierTranslator(namespace="uuid")

    assert translator.to_backend_datastream_id(
        "a b"
    ) != translator.to_backend_datastream_id("a-b")


def test_escape_payload_id_replaces_every_space() -> None:
    """Escaping should replace all spaces with underscores."""
    assert escape_payload_id(" a b  c ") == "_a_b__c_"


def test_search_terms_cover_namespace() -> None:
    """Search terms should be a wildcard over the configured namespace."""
    assert IdentifierTranslator(namespace="tf").search_terms() == "tf:*"
