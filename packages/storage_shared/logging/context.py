"""Context propagation helpers for structured logging.

Correlation fields (object ids, backend PIDs, datastream ids) are kept in a
``contextvars`` mapping so every log line emitted while an operation runs
carries them without being repeated at each call site. Safe for threads and
asyncio tasks alike.
"""

from __future__ import annotations

from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from typing import Iterator, Mapping

from . import fields

_LOG_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar(
    "storage_log_context", default={}
)


def get_context() -> dict[str, str]:
    """Return a copy of the current logging context."""
    return dict(_LOG_CONTEXT.get())


def _merged(values: Mapping[str, object]) -> dict[str, str]:
    """Return current context overlaid with stringified non-``None`` values."""
    merged = dict(_LOG_CONTEXT.get())
    merged.update(
        {str(key): str(value) for key, value in values.items() if value is not None}
    )
    return merged


def bind_context(**values: object) -> None:
    """Bind values into the current logging context; ``None`` is skipped."""
    if values:
        _LOG_CONTEXT.set(_merged(values))


def clear_context(*keys: str) -> None:
    """Drop selected keys, or every key when none are given."""
    if not keys:
        _LOG_CONTEXT.set({})
        return
    _LOG_CONTEXT.set(
        {key: value for key, value in _LOG_CONTEXT.get().items() if key not in keys}
    )


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Overlay logging context for the duration of a block."""
    token = _LOG_CONTEXT.set(_merged(values))
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def repository_context(
    *,
    object_id: str | None = None,
    backend_pid: str | None = None,
    payload_id: str | None = None,
    datastream_id: str | None = None,
) -> AbstractContextManager[None]:
    """Overlay the canonical repository identity fields for one operation."""
    return log_context(
        {
            fields.OBJECT_ID: object_id,
            fields.BACKEND_PID: backend_pid,
            fields.PAYLOAD_ID: payload_id,
            fields.DATASTREAM_ID: datastream_id,
        }
    )
