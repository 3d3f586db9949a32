"""Typed errors for the shared HTTP client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class HttpError(Exception):
    """Base error type for shared HTTP helper failures."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class HttpClientError(HttpError):
    """Base error for outbound HTTP client call failures."""

    method: str
    url: str
    retryable: bool = False


@dataclass(frozen=True)
class HttpRequestError(HttpClientError):
    """Transport-level failure (connect, read, timeout, protocol)."""

    cause: Exception | None = None


@dataclass(frozen=True)
class HttpInvalidUrlError(HttpClientError):
    """Request URL could not be built from the configured base URL."""

    cause: Exception | None = None


@dataclass(frozen=True)
class HttpStatusError(HttpClientError):
    """Non-success status code returned by the server."""

    status_code: int = 0
    response_body: str = ""
    response_headers: Mapping[str, str] = field(default_factory=dict)

