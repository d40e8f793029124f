"""
Transports that open an SSE endpoint and yield its raw lines.

The connection only depends on the ``Transport`` protocol, so the reconnect
state machine can be driven by a scripted transport in tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Mapping, Protocol

import httpx

from .errors import TransportError

LOGGER = logging.getLogger(__name__)


class Transport(Protocol):
    """Protocol implemented by SSE transports."""

    def open(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        last_event_id: str | None = None,
    ) -> AsyncContextManager[AsyncIterator[str]]: ...


class HttpxTransport:
    """
    Streams an SSE endpoint with httpx.

    Usage:
        transport = HttpxTransport(timeout=30.0)
        async with transport.open("http://localhost:8000/events", headers={}) as lines:
            async for line in lines:
                ...
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        headers_as_query: bool = False,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.headers_as_query = headers_as_query
        self._client = client

    def _build_request(
        self, headers: Mapping[str, str], last_event_id: str | None
    ) -> tuple[dict[str, str], dict[str, str]]:
        request_headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        params: dict[str, str] = {}
        if self.headers_as_query:
            params.update(headers)
        else:
            request_headers.update(headers)
        if last_event_id:
            request_headers["Last-Event-ID"] = last_event_id
        return request_headers, params

    @asynccontextmanager
    async def open(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        last_event_id: str | None = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        request_headers, params = self._build_request(headers, last_event_id)
        # Reads may block for as long as the server stays quiet; only the
        # handshake is bounded.
        timeout = httpx.Timeout(self.timeout, read=None)

        try:
            if self._client is not None:
                async with self._client.stream(
                    "GET", url, headers=request_headers, params=params, timeout=timeout
                ) as response:
                    self._check_response(response)
                    yield response.aiter_lines()
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    async with client.stream(
                        "GET", url, headers=request_headers, params=params
                    ) as response:
                        self._check_response(response)
                        yield response.aiter_lines()
        except httpx.HTTPError as e:
            raise TransportError(f"SSE transport error: {e}") from e

    @staticmethod
    def _check_response(response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise TransportError(
                f"SSE endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        content_type = response.headers.get("content-type", "")
        if content_type and "text/event-stream" not in content_type:
            LOGGER.warning(f"Unexpected content type from SSE endpoint: {content_type}")


__all__ = ["HttpxTransport", "Transport"]
