"""Temporary local staging of payload bytes ahead of repository upload."""

from __future__ import annotations

import mimetypes
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from packages.storage_shared.logging import get_logger
from services.state.payload_storage.domain import DEFAULT_MIME_TYPE
from services.state.payload_storage.errors import BackendError
from services.state.payload_storage.identifiers import escape_payload_id

_LOGGER = get_logger(__name__)

_SNIFF_BYTES = 512

# Leading-byte signatures checked before falling back to the file name.
_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"%PDF-", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b", "application/gzip"),
    (b"OggS", "audio/ogg"),
    (b"ID3", "audio/mpeg"),
)


@dataclass
class StagedUpload:
    """One temporary file holding payload bytes until upload completes."""

    path: Path
    mime_type: str

    def discard(self) -> None:
        """Delete the staged file; missing files are ignored."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            _LOGGER.warning("Unable to delete staged file: path=%s", self.path)


def staged_file_affixes(payload_id: str) -> tuple[str, str | None]:
    """Return the temp file prefix and suffix derived from a payload id.

    The prefix is the base name padded to three characters with ``_``; the
    suffix is the dotted extension, or ``None`` when there is none.
    """
    name = escape_payload_id(payload_id).replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, extension = name.rpartition(".")
    if not dot:
        stem, extension = name, ""
    prefix = stem.ljust(3, "_")
    suffix = f".{extension}" if extension else None
    return prefix, suffix


def stage_stream(
    *,
    payload_id: str,
    stream: BinaryIO,
    staging_dir: Path | None = None,
) -> StagedUpload:
    """Copy ``stream`` into a new temporary file and detect its MIME type.

    The caller's stream is closed whether or not staging succeeds.
    """
    prefix, suffix = staged_file_affixes(payload_id)
    path: Path | None = None
    try:
        descriptor, raw_path = tempfile.mkstemp(
            prefix=prefix,
            suffix=suffix,
            dir=str(staging_dir) if staging_dir is not None else None,
        )
        path = Path(raw_path)
        with os.fdopen(descriptor, "wb") as handle:
            shutil.copyfileobj(stream, handle)
    except Exception as exc:
        _discard_partial(path)
        raise BackendError(f"failed to stage payload '{payload_id}': {exc}") from exc
    except BaseException:
        _discard_partial(path)
        raise
    finally:
        _close_stream(stream)

    return StagedUpload(path=path, mime_type=detect_mime_type(path))


def detect_mime_type(path: Path) -> str:
    """Detect a MIME type from leading bytes, then file name, then text heuristics."""
    try:
        with path.open("rb") as handle:
            head = handle.read(_SNIFF_BYTES)
    except OSError:
        head = b""

    for signature, mime_type in _SIGNATURES:
        if head.startswith(signature):
            return mime_type

    guessed, _ = mimetypes.guess_type(path.name)
    if guessed:
        return guessed

    stripped = head.lstrip()
    if stripped.startswith(b"<?xml"):
        return "application/xml"
    if head and _looks_like_text(head):
        return "text/plain"
    return DEFAULT_MIME_TYPE


def _looks_like_text(head: bytes) -> bool:
    if b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # a multi-byte character may be cut at the sniff boundary
        return exc.start >= len(head) - 3
    return True


def _discard_partial(path: Path | None) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError:
        _LOGGER.warning("Unable to delete partial staged file: path=%s", path)


def _close_stream(stream: BinaryIO) -> None:
    try:
        stream.close()
    except OSError:
        _LOGGER.debug("Input stream close failed", exc_info=True)
