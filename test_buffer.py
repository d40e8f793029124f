from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping

from agui_stream.buffer import (
    MessageBuffer,
    ToolCallBuffer,
    ToolCallState,
    bind_message_aggregation,
    bind_tool_aggregation,
    parse_message_id,
)
from agui_stream.config import StreamConfig
from agui_stream.router import EventRouter
from agui_stream.stream import EventStream
from agui_stream.types import (
    EventType,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_chunks_aggregate_into_completed_message() -> None:
    completed: list[tuple[str, str]] = []
    buffer = MessageBuffer(on_complete=lambda message_id, text: completed.append((message_id, text)))

    buffer.start("m1")
    assert buffer.get("m1") == ""
    assert buffer.chunk("m1", "Hel") == "Hel"
    assert buffer.chunk("m1", "lo") == "Hello"
    message = buffer.end("m1")

    assert message is not None
    assert message.content == "Hello"
    assert message.role == "assistant"
    assert completed == [("m1", "Hello")]
    assert not buffer.has("m1")
    assert buffer.completed == [message]


def test_unknown_and_finalized_ids_are_ignored() -> None:
    buffer = MessageBuffer()

    assert buffer.chunk("ghost", "x") is None
    assert buffer.end("ghost") is None

    buffer.start("m1")
    buffer.end("m1")
    assert buffer.chunk("m1", "late") is None
    assert buffer.end("m1") is None
    assert buffer.active_ids() == []


def test_interleaved_messages() -> None:
    buffer = MessageBuffer()
    buffer.start("a")
    buffer.start("b", role="user")
    buffer.chunk("a", "1")
    buffer.chunk("b", "x")
    buffer.chunk("a", "2")

    assert buffer.active_ids() == ["a", "b"]
    first = buffer.end("b")
    second = buffer.end("a")
    assert first is not None and first.content == "x" and first.role == "user"
    assert second is not None and second.content == "12"


def test_stale_accumulators_are_evicted() -> None:
    clock = FakeClock()
    buffer = MessageBuffer(stale_after_s=10, clock=clock)

    buffer.start("old")
    clock.now = 5
    buffer.start("fresh")
    clock.now = 12

    assert buffer.evict_stale() == ["old"]
    assert buffer.active_ids() == ["fresh"]

    # start() also evicts
    clock.now = 30
    buffer.start("newest")
    assert buffer.active_ids() == ["newest"]


def test_chunk_refreshes_staleness() -> None:
    clock = FakeClock()
    buffer = MessageBuffer(stale_after_s=10, clock=clock)
    buffer.start("m1")
    clock.now = 8
    buffer.chunk("m1", "still here")
    clock.now = 15

    assert buffer.evict_stale() == []


def test_tool_call_buffer_parses_arguments() -> None:
    buffer = ToolCallBuffer()

    buffer.start("tc1", "search", parent_message_id="m1")
    buffer.start("tc2", "calculate", parent_message_id="m1")
    assert buffer.append_args("tc1", '{"query":') == '{"query":'
    assert buffer.append_args("tc1", '"test"}') == '{"query":"test"}'
    state = buffer.end("tc1")
    buffer.set_result("tc1", '["r1"]')

    assert state is not None
    assert state.status == "done"
    assert state.parsed_args == {"query": "test"}
    assert state.result == '["r1"]'
    assert set(buffer.by_message("m1")) == {"tc1", "tc2"}
    assert buffer.append_args("tc1", "more") is None

    buffer.clear()
    assert buffer.by_message("m1") == {}


def test_tool_call_with_invalid_json_args_keeps_raw_text() -> None:
    buffer = ToolCallBuffer()
    buffer.start("tc1", "search")
    buffer.append_args("tc1", "{oops")

    state = buffer.end("tc1")

    assert state is not None
    assert state.args == "{oops"
    assert state.parsed_args is None


def test_bind_message_aggregation_on_router() -> None:
    router = EventRouter()
    chunks: list[tuple[str, str, str]] = []
    completed: list[tuple[str, str]] = []
    aggregation = bind_message_aggregation(
        router,
        on_message_chunk=lambda message_id, accumulated, delta: chunks.append((message_id, accumulated, delta)),
        on_message_complete=lambda message_id, text: completed.append((message_id, text)),
    )

    router.route(TextMessageStartEvent(type=EventType.TEXT_MESSAGE_START, message_id="m1"))
    router.route(TextMessageContentEvent(type=EventType.TEXT_MESSAGE_CONTENT, message_id="m1", delta="Hello"))
    router.route(TextMessageContentEvent(type=EventType.TEXT_MESSAGE_CONTENT, message_id="m1", delta=" World"))
    router.route(TextMessageEndEvent(type=EventType.TEXT_MESSAGE_END, message_id="m1"))

    assert chunks == [("m1", "Hello", "Hello"), ("m1", "Hello World", " World")]
    assert completed == [("m1", "Hello World")]

    router.route(TextMessageStartEvent(type=EventType.TEXT_MESSAGE_START, message_id="m2"))
    aggregation.unsubscribe()
    assert not aggregation.buffer.has("m2")
    assert router.handler_count() == 0


def test_bind_tool_aggregation_on_router() -> None:
    router = EventRouter()
    ended: list[ToolCallState] = []
    results: list[str | None] = []
    aggregation = bind_tool_aggregation(
        router,
        on_tool_end=ended.append,
        on_tool_result=lambda state: results.append(state.result),
    )

    router.route(
        ToolCallStartEvent(
            type=EventType.TOOL_CALL_START, tool_call_id="tc1", tool_call_name="search", parent_message_id="m1"
        )
    )
    router.route(ToolCallArgsEvent(type=EventType.TOOL_CALL_ARGS, tool_call_id="tc1", delta='{"q": 1}'))
    router.route(ToolCallEndEvent(type=EventType.TOOL_CALL_END, tool_call_id="tc1"))
    router.route(ToolCallResultEvent(type=EventType.TOOL_CALL_RESULT, tool_call_id="tc1", content="done"))

    assert ended[0].parsed_args == {"q": 1}
    assert results == ["done"]
    assert aggregation.buffer.get("tc1") is not None


def test_stream_binding_clears_open_messages_on_disconnect() -> None:
    class OneShotTransport:
        @asynccontextmanager
        async def open(self, url: str, *, headers: Mapping[str, str], last_event_id: str | None = None):
            async def _lines() -> AsyncIterator[str]:
                yield "data: " + json.dumps({"type": "TEXT_MESSAGE_START", "messageId": "m1"})
                yield ""
                yield "data: " + json.dumps({"type": "TEXT_MESSAGE_CONTENT", "messageId": "m1", "delta": "partial"})
                yield ""

            yield _lines()

    stream = EventStream(
        StreamConfig(url="http://agent.test/events", auto_reconnect=False),
        transport=OneShotTransport(),
    )
    aggregation = bind_message_aggregation(stream)

    async def _run() -> None:
        stream.connect()
        await stream.wait_closed()

    asyncio.run(_run())
    assert aggregation.buffer.get("m1") == "partial"

    stream.disconnect()
    assert aggregation.buffer.active_ids() == []


def test_parse_message_id() -> None:
    parsed = parse_message_id("msg:sess-123:worker-1:step:with:colons")

    assert parsed.session_id == "sess-123"
    assert parsed.worker_id == "worker-1"
    assert parsed.step_id == "step:with:colons"

    fallback = parse_message_id("invalid-format")
    assert fallback.session_id == ""
    assert fallback.worker_id == "default"
    assert fallback.step_id == ""
    assert fallback.raw == "invalid-format"


def test_stale_message_is_evicted_before_chunk_and_end() -> None:
    clock = FakeClock()
    completed: list[tuple[str, str]] = []
    buffer = MessageBuffer(
        on_complete=lambda message_id, text: completed.append((message_id, text)),
        stale_after_s=10,
        clock=clock,
    )
    buffer.start("m1")
    clock.now = 11

    assert buffer.chunk("m1", "late") is None
    assert buffer.active_ids() == []
    assert buffer.end("m1") is None
    assert completed == []

    buffer.start("m2")
    clock.now = 22
    assert buffer.end("m2") is None
    assert completed == []
