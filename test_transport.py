from __future__ import annotations

import asyncio

import httpx
import pytest

from agui_stream.errors import TransportError
from agui_stream.transport import HttpxTransport

BODY = b'data: {"type": "RUN_STARTED"}\n\n: ping\n\n'


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_streams_lines_with_sse_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=BODY)

    async def _run() -> list[str]:
        async with _client(handler) as client:
            transport = HttpxTransport(client=client)
            async with transport.open(
                "http://agent.test/events", headers={"X-Token": "t"}, last_event_id="42"
            ) as lines:
                return [line async for line in lines]

    lines = asyncio.run(_run())

    assert lines[0] == 'data: {"type": "RUN_STARTED"}'
    assert ": ping" in lines
    request = seen[0]
    assert request.headers["accept"] == "text/event-stream"
    assert request.headers["last-event-id"] == "42"
    assert request.headers["x-token"] == "t"


def test_headers_can_travel_as_query_parameters() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=b"")

    async def _run() -> None:
        async with _client(handler) as client:
            transport = HttpxTransport(client=client, headers_as_query=True)
            async with transport.open("http://agent.test/events", headers={"token": "abc"}) as lines:
                async for _ in lines:
                    pass

    asyncio.run(_run())

    assert seen[0].url.params["token"] == "abc"
    assert "token" not in seen[0].headers


def test_http_error_status_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, content=b"unavailable")

    async def _run() -> None:
        async with _client(handler) as client:
            async with HttpxTransport(client=client).open("http://agent.test/events", headers={}):
                pass

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(_run())
    assert excinfo.value.status_code == 503


def test_network_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def _run() -> None:
        async with _client(handler) as client:
            async with HttpxTransport(client=client).open("http://agent.test/events", headers={}):
                pass

    with pytest.raises(TransportError):
        asyncio.run(_run())
