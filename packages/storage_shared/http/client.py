"""Shared synchronous HTTP client wrapper over httpx."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx

from .errors import HttpInvalidUrlError, HttpRequestError, HttpStatusError


def _response_text(response: httpx.Response) -> str:
    """Return response text without raising secondary decode errors."""
    try:
        return response.text
    except Exception:  # noqa: BLE001
        return ""


def _status_error(response: httpx.Response) -> HttpStatusError:
    """Build a typed status error from one (already read) HTTP response."""
    status_code = response.status_code
    retryable = status_code >= 500 or status_code in {408, 429}
    return HttpStatusError(
        message=f"HTTP {status_code} for {response.request.method} {response.request.url}",
        method=response.request.method,
        url=str(response.request.url),
        retryable=retryable,
        status_code=status_code,
        response_body=_response_text(response),
        response_headers=dict(response.headers.items()),
    )


class HttpClient:
    """Thin synchronous wrapper over ``httpx.Client`` with typed failures."""

    def __init__(
        self,
        *,
        base_url: str = "",
        timeout_seconds: float = 10.0,
        headers: Mapping[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        follow_redirects: bool = False,
        transport: httpx.BaseTransport | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._owns_client = client is None
        try:
            self._client = client or httpx.Client(
                base_url=base_url,
                timeout=timeout_seconds,
                headers=dict(headers or {}),
                auth=auth,
                follow_redirects=follow_redirects,
                transport=transport,
            )
        except httpx.InvalidURL as exc:
            raise HttpInvalidUrlError(
                message=f"Invalid base URL {base_url!r}",
                method="",
                url=base_url,
                retryable=False,
                cause=exc,
            ) from exc

    @property
    def base_url(self) -> str:
        """Return the effective base URL requests are resolved against."""
        return str(self._client.base_url)

    def close(self) -> None:
        """Close underlying transport resources when owned."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def request(
        self,
        method: str,
        url: str,
        *,
        raise_for_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request and map transport/status failures to typed errors."""
        request = self._build_request(method, url, **kwargs)
        try:
            response = self._client.send(request)
        except httpx.RequestError as exc:
            raise _request_error(exc, request=request) from exc

        if raise_for_status and response.is_error:
            raise _status_error(response)
        return response

    def stream(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one request and return an unread streaming response.

        The caller owns the returned response and must close it. Error
        responses are read, closed and raised as ``HttpStatusError``.
        """
        request = self._build_request(method, url, **kwargs)
        try:
            response = self._client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise _request_error(exc, request=request) from exc

        if response.is_error:
            try:
                response.read()
            except httpx.HTTPError:
                pass
            finally:
                response.close()
            raise _status_error(response)
        return response

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one GET request."""
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one POST request."""
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one PUT request."""
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one DELETE request."""
        return self.request("DELETE", url, **kwargs)

    def _build_request(self, method: str, url: str, **kwargs: Any) -> httpx.Request:
        """Build one request, mapping URL construction failures."""
        try:
            return self._client.build_request(method=method, url=url, **kwargs)
        except httpx.InvalidURL as exc:
            raise HttpInvalidUrlError(
                message=f"Invalid request URL for {method.upper()} {url}",
                method=method.upper(),
                url=url,
                retryable=False,
                cause=exc,
            ) from exc


def _request_error(exc: httpx.RequestError, *, request: httpx.Request) -> HttpRequestError:
    """Map one httpx transport failure into a typed request error."""
    return HttpRequestError(
        message=f"HTTP request failed for {request.method} {request.url}",
        method=request.method,
        url=str(request.url),
        retryable=not isinstance(exc, httpx.UnsupportedProtocol),
        cause=exc,
    )
