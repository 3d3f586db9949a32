"""Stdout logging configuration for the payload storage stack.

Design goals:
- Emit every record to stdout, as JSON lines by default.
- Carry the bound repository context (object/payload identities) on each line.
- Stay idempotent so repeated configuration never duplicates handlers.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from . import fields
from .context import bind_context, get_context

if TYPE_CHECKING:
    from packages.storage_shared.config import LoggingSettings


class ContextFilter(logging.Filter):
    """Attach the current structured context to each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_context()
        return True


class JsonFormatter(logging.Formatter):
    """Emit newline-delimited JSON logs with stable core fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            fields.TIMESTAMP: datetime.fromtimestamp(record.created, UTC).isoformat(),
            fields.LEVEL: record.levelname,
            fields.LOGGER: record.name,
            fields.MESSAGE: record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            payload.update(context)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, separators=(",", ":"))


class PlainFormatter(logging.Formatter):
    """Human-readable formatter that appends structured context as key=value."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "context", None)
        if not isinstance(context, dict) or not context:
            return message
        suffix = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{message} {suffix}"


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    service: str | None = None,
    environment: str | None = None,
) -> None:
    """Install a single stdout handler on the root logger.

    Existing root handlers are replaced, so calling this more than once never
    duplicates emissions.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level.upper())
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else PlainFormatter())
    root.addHandler(handler)

    bind_context(
        **{
            fields.SERVICE: service or None,
            fields.ENVIRONMENT: environment or None,
        }
    )


def configure_logging_from_settings(settings: LoggingSettings) -> None:
    """Configure root logging from the typed ``logging`` settings subtree."""
    configure_logging(
        level=settings.level,
        json_output=settings.json_output,
        service=settings.service,
        environment=settings.environment,
    )


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger from Python's standard logging hierarchy."""
    return logging.getLogger(name)
