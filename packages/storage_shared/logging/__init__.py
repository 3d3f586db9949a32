"""Public logging API for the payload storage stack.

This package wraps Python's ``logging`` module with opinionated defaults for
stdout emission and structured context propagation.
"""

from .config import configure_logging, configure_logging_from_settings, get_logger
from .context import (
    bind_context,
    clear_context,
    get_context,
    log_context,
    repository_context,
)
from .public_api import (
    CompletionContext,
    InvocationContext,
    PublicApiInstrumentationConcern,
    PublicApiLoggingConcern,
    public_api_logged,
)

__all__ = [
    "bind_context",
    "clear_context",
    "CompletionContext",
    "configure_logging",
    "configure_logging_from_settings",
    "get_context",
    "get_logger",
    "InvocationContext",
    "log_context",
    "PublicApiInstrumentationConcern",
    "PublicApiLoggingConcern",
    "public_api_logged",
    "repository_context",
]
