"""Public shared HTTP API for storage packages."""

from .client import HttpClient
from .errors import (
    HttpClientError,
    HttpError,
    HttpInvalidUrlError,
    HttpRequestError,
    HttpStatusError,
)

__all__ = [
    "HttpClient",
    "HttpClientError",
    "HttpError",
    "HttpInvalidUrlError",
    "HttpRequestError",
    "HttpStatusError",
]
