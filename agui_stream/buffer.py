"""
Streaming aggregation for text messages and tool calls.

TEXT_MESSAGE_START / CONTENT / END triples are folded into complete messages
and TOOL_CALL_START / ARGS / END / RESULT into complete tool calls. Several
messages or tool calls may be open at once; each is keyed by its id.

Usage:
    aggregation = bind_message_aggregation(
        stream,
        on_message_complete=lambda message_id, text: print(text),
    )
    ...
    aggregation.unsubscribe()
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from .registry import safe_call
from .types import (
    ConnectionStatus,
    EventType,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    Unsubscribe,
)

LOGGER = logging.getLogger(__name__)

CompletionCallback = Callable[[str, str], None]


# ---------------------------------------------------------------------------
# Text messages
# ---------------------------------------------------------------------------


@dataclass
class MessageAccumulator:
    """An open message receiving content chunks."""

    message_id: str
    role: str = "assistant"
    chunks: list[str] = field(default_factory=list)
    started_at: float = 0.0
    updated_at: float = 0.0

    @property
    def content(self) -> str:
        return "".join(self.chunks)


@dataclass(frozen=True)
class CompletedMessage:
    message_id: str
    role: str
    content: str
    started_at: float
    completed_at: float


class MessageBuffer:
    """
    Open-set of message accumulators keyed by message id.

    Args:
        on_complete: Called with ``(message_id, content)`` when a message ends
        stale_after_s: Drop accumulators that received nothing for this long.
            ``None`` disables eviction.
        max_completed: How many finished messages ``completed`` keeps
        clock: Monotonic time source
    """

    def __init__(
        self,
        on_complete: CompletionCallback | None = None,
        *,
        stale_after_s: float | None = None,
        max_completed: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.on_complete = on_complete
        self.stale_after_s = stale_after_s
        self._clock = clock
        self._open: dict[str, MessageAccumulator] = {}
        self._completed: deque[CompletedMessage] = deque(maxlen=max_completed)

    def start(self, message_id: str, role: str = "assistant") -> MessageAccumulator:
        """Open an empty accumulator, replacing any open one with the same id."""
        self.evict_stale()
        now = self._clock()
        accumulator = MessageAccumulator(message_id, role, started_at=now, updated_at=now)
        self._open[message_id] = accumulator
        return accumulator

    def chunk(self, message_id: str, delta: str) -> str | None:
        """
        Append ``delta`` to an open message.

        Returns:
            The accumulated text, or None if ``message_id`` is not open.
        """
        self.evict_stale()
        accumulator = self._open.get(message_id)
        if accumulator is None:
            LOGGER.debug(f"Ignoring chunk for unknown message {message_id}")
            return None
        accumulator.chunks.append(delta)
        accumulator.updated_at = self._clock()
        return accumulator.content

    def end(self, message_id: str) -> CompletedMessage | None:
        """Finalize an open message and emit its text; no-op for unknown ids."""
        self.evict_stale()
        accumulator = self._open.pop(message_id, None)
        if accumulator is None:
            LOGGER.debug(f"Ignoring end for unknown message {message_id}")
            return None

        message = CompletedMessage(
            message_id=message_id,
            role=accumulator.role,
            content=accumulator.content,
            started_at=accumulator.started_at,
            completed_at=self._clock(),
        )
        self._completed.append(message)
        safe_call(self.on_complete, message_id, message.content, label="Message completion callback")
        return message

    def get(self, message_id: str) -> str | None:
        accumulator = self._open.get(message_id)
        return accumulator.content if accumulator else None

    def has(self, message_id: str) -> bool:
        return message_id in self._open

    def active_ids(self) -> list[str]:
        return list(self._open)

    @property
    def completed(self) -> list[CompletedMessage]:
        return list(self._completed)

    def evict_stale(self, now: float | None = None) -> list[str]:
        """Drop accumulators idle longer than ``stale_after_s``; returns their ids."""
        if self.stale_after_s is None:
            return []
        now = self._clock() if now is None else now
        stale = [
            message_id
            for message_id, accumulator in self._open.items()
            if now - accumulator.updated_at > self.stale_after_s
        ]
        for message_id in stale:
            del self._open[message_id]
            LOGGER.warning(f"Evicted stale message {message_id}")
        return stale

    def clear(self) -> None:
        self._open.clear()
        self._completed.clear()


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@dataclass
class ToolCallState:
    tool_call_id: str
    name: str
    parent_message_id: str | None = None
    args: str = ""
    parsed_args: Any = None
    result: str | None = None
    status: str = "running"  # running -> done
    started_at: float = 0.0
    ended_at: float | None = None


class ToolCallBuffer:
    """Tracks tool calls by id while their arguments stream in."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._calls: dict[str, ToolCallState] = {}

    def start(self, tool_call_id: str, name: str, parent_message_id: str | None = None) -> ToolCallState:
        state = ToolCallState(tool_call_id, name, parent_message_id, started_at=self._clock())
        self._calls[tool_call_id] = state
        return state

    def append_args(self, tool_call_id: str, delta: str) -> str | None:
        state = self._calls.get(tool_call_id)
        if state is None or state.status != "running":
            LOGGER.debug(f"Ignoring args for unknown tool call {tool_call_id}")
            return None
        state.args += delta
        return state.args

    def end(self, tool_call_id: str) -> ToolCallState | None:
        """Mark a tool call done and parse its accumulated JSON arguments."""
        state = self._calls.get(tool_call_id)
        if state is None:
            return None
        state.status = "done"
        state.ended_at = self._clock()
        if state.args:
            try:
                state.parsed_args = json.loads(state.args)
            except json.JSONDecodeError as e:
                LOGGER.warning(f"Tool call {tool_call_id} arguments are not valid JSON: {e}")
        return state

    def set_result(self, tool_call_id: str, result: str) -> ToolCallState | None:
        state = self._calls.get(tool_call_id)
        if state is not None:
            state.result = result
        return state

    def get(self, tool_call_id: str) -> ToolCallState | None:
        return self._calls.get(tool_call_id)

    def by_message(self, message_id: str) -> dict[str, ToolCallState]:
        return {
            tool_call_id: state
            for tool_call_id, state in self._calls.items()
            if state.parent_message_id == message_id
        }

    def clear(self) -> None:
        self._calls.clear()


# ---------------------------------------------------------------------------
# Router / stream integration
# ---------------------------------------------------------------------------


class _EventSource(Protocol):
    def on(self, event_type: EventType | str, handler: Callable[[Any], None]) -> Unsubscribe: ...


@dataclass
class MessageAggregation:
    buffer: MessageBuffer
    _unsubscribes: list[Unsubscribe] = field(default_factory=list, repr=False)

    def unsubscribe(self) -> None:
        """Remove every handler and drop buffered content."""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()
        self.buffer.clear()


@dataclass
class ToolAggregation:
    buffer: ToolCallBuffer
    _unsubscribes: list[Unsubscribe] = field(default_factory=list, repr=False)

    def unsubscribe(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()
        self.buffer.clear()


def _clear_on_disconnect(source: Any, clear: Callable[[], None]) -> list[Unsubscribe]:
    on_status_change = getattr(source, "on_status_change", None)
    if on_status_change is None:
        return []

    def on_status(status: ConnectionStatus) -> None:
        if status == ConnectionStatus.DISCONNECTED:
            clear()

    return [on_status_change(on_status)]


def bind_message_aggregation(
    source: _EventSource,
    *,
    on_message_start: Callable[[str], None] | None = None,
    on_message_chunk: Callable[[str, str, str], None] | None = None,
    on_message_complete: CompletionCallback | None = None,
    buffer: MessageBuffer | None = None,
) -> MessageAggregation:
    """
    Aggregate TEXT_MESSAGE_* events from a router or stream.

    ``on_message_chunk`` receives ``(message_id, accumulated, delta)``. When
    ``source`` is a stream, open messages are dropped on disconnect.
    """
    buffer = buffer or MessageBuffer()

    def on_start(event: TextMessageStartEvent) -> None:
        if not event.message_id:
            return
        buffer.start(event.message_id, event.role)
        safe_call(on_message_start, event.message_id, label="on_message_start")

    def on_content(event: TextMessageContentEvent) -> None:
        accumulated = buffer.chunk(event.message_id, event.delta)
        if accumulated is not None:
            safe_call(on_message_chunk, event.message_id, accumulated, event.delta, label="on_message_chunk")

    def on_end(event: TextMessageEndEvent) -> None:
        message = buffer.end(event.message_id)
        if message is not None:
            safe_call(on_message_complete, message.message_id, message.content, label="on_message_complete")

    unsubscribes = [
        source.on(EventType.TEXT_MESSAGE_START, on_start),
        source.on(EventType.TEXT_MESSAGE_CONTENT, on_content),
        source.on(EventType.TEXT_MESSAGE_END, on_end),
    ]
    unsubscribes += _clear_on_disconnect(source, buffer.clear)
    return MessageAggregation(buffer, unsubscribes)


def bind_tool_aggregation(
    source: _EventSource,
    *,
    on_tool_start: Callable[[ToolCallState], None] | None = None,
    on_tool_args: Callable[[ToolCallState, str], None] | None = None,
    on_tool_end: Callable[[ToolCallState], None] | None = None,
    on_tool_result: Callable[[ToolCallState], None] | None = None,
    buffer: ToolCallBuffer | None = None,
) -> ToolAggregation:
    """Aggregate TOOL_CALL_* events from a router or stream."""
    buffer = buffer or ToolCallBuffer()

    def on_start(event: ToolCallStartEvent) -> None:
        if not event.tool_call_id:
            return
        state = buffer.start(event.tool_call_id, event.tool_call_name, event.parent_message_id)
        safe_call(on_tool_start, state, label="on_tool_start")

    def on_args(event: ToolCallArgsEvent) -> None:
        if buffer.append_args(event.tool_call_id, event.delta) is not None:
            safe_call(on_tool_args, buffer.get(event.tool_call_id), event.delta, label="on_tool_args")

    def on_end(event: ToolCallEndEvent) -> None:
        state = buffer.end(event.tool_call_id)
        if state is not None:
            safe_call(on_tool_end, state, label="on_tool_end")

    def on_result(event: ToolCallResultEvent) -> None:
        state = buffer.set_result(event.tool_call_id, event.content)
        if state is not None:
            safe_call(on_tool_result, state, label="on_tool_result")

    unsubscribes = [
        source.on(EventType.TOOL_CALL_START, on_start),
        source.on(EventType.TOOL_CALL_ARGS, on_args),
        source.on(EventType.TOOL_CALL_END, on_end),
        source.on(EventType.TOOL_CALL_RESULT, on_result),
    ]
    unsubscribes += _clear_on_disconnect(source, buffer.clear)
    return ToolAggregation(buffer, unsubscribes)


# ---------------------------------------------------------------------------
# Message ids
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedMessageId:
    session_id: str
    worker_id: str
    step_id: str
    raw: str


def parse_message_id(message_id: str) -> ParsedMessageId:
    """
    Split a ``msg:{session}:{worker}:{step}`` message id.

    The step part may itself contain ':'. Ids in any other format parse to an
    empty session and step with worker ``"default"``.

    Example:
        parse_message_id("msg:sess-123:worker-1:reasoning")
        # ParsedMessageId(session_id='sess-123', worker_id='worker-1', step_id='reasoning', ...)
    """
    raw = message_id or ""
    parts = raw.split(":")
    if len(parts) < 4 or parts[0] != "msg":
        return ParsedMessageId(session_id="", worker_id="default", step_id="", raw=raw)
    return ParsedMessageId(
        session_id=parts[1],
        worker_id=parts[2] or "default",
        step_id=":".join(parts[3:]),
        raw=raw,
    )


__all__ = [
    "CompletedMessage",
    "MessageAccumulator",
    "MessageAggregation",
    "MessageBuffer",
    "ParsedMessageId",
    "ToolAggregation",
    "ToolCallBuffer",
    "ToolCallState",
    "bind_message_aggregation",
    "bind_tool_aggregation",
    "parse_message_id",
]
