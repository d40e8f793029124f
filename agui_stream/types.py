"""
AG-UI Protocol event types.

This module defines the event types used by the AG-UI protocol for
streaming agent state to UI clients via Server-Sent Events (SSE), plus the
connection status values shared by the connection and the event stream.

Reference: https://docs.ag-ui.com/concepts/events
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

ValueT = TypeVar("ValueT")

Unsubscribe = Callable[[], None]


class EventType(str, Enum):
    """AG-UI protocol event types."""

    # Lifecycle events
    RUN_STARTED = "RUN_STARTED"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_ERROR = "RUN_ERROR"

    # Step events
    STEP_STARTED = "STEP_STARTED"
    STEP_FINISHED = "STEP_FINISHED"

    # Text message events (streaming pattern: START -> CONTENT* -> END)
    TEXT_MESSAGE_START = "TEXT_MESSAGE_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TEXT_MESSAGE_END = "TEXT_MESSAGE_END"

    # Tool call events (streaming pattern: START -> ARGS* -> END -> RESULT)
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS = "TOOL_CALL_ARGS"
    TOOL_CALL_END = "TOOL_CALL_END"
    TOOL_CALL_RESULT = "TOOL_CALL_RESULT"

    # State synchronization events
    STATE_SNAPSHOT = "STATE_SNAPSHOT"
    STATE_DELTA = "STATE_DELTA"
    MESSAGES_SNAPSHOT = "MESSAGES_SNAPSHOT"

    # Raw/custom events
    RAW = "RAW"
    CUSTOM = "CUSTOM"


class ConnectionStatus(str, Enum):
    """Lifecycle states of a streaming connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass
class BaseEvent:
    """Base class for all AG-UI events.

    ``sequence`` and ``generation`` are stamped by the event stream at
    delivery time; they stay ``None`` on events produced by the parser alone.
    """
    type: EventType
    timestamp: int | None = None
    raw_data: dict[str, Any] | None = None
    sequence: int | None = None
    generation: int | None = None


@dataclass
class RunStartedEvent(BaseEvent):
    """Emitted when an agent run begins."""
    thread_id: str | None = None
    run_id: str | None = None


@dataclass
class RunFinishedEvent(BaseEvent):
    """Emitted when an agent run completes."""
    thread_id: str | None = None
    run_id: str | None = None
    result: Any = None


@dataclass
class RunErrorEvent(BaseEvent):
    """Emitted when an agent run fails."""
    message: str = ""
    code: str | None = None


@dataclass
class StepStartedEvent(BaseEvent):
    """Emitted when a step within a run begins."""
    step_name: str | None = None


@dataclass
class StepFinishedEvent(BaseEvent):
    """Emitted when a step within a run completes."""
    step_name: str | None = None


@dataclass
class TextMessageStartEvent(BaseEvent):
    """Signals the start of a new text message."""
    message_id: str = ""
    role: str = "assistant"  # "user", "assistant", "system", "tool", etc.


@dataclass
class TextMessageContentEvent(BaseEvent):
    """Carries a chunk of text content for streaming."""
    message_id: str = ""
    delta: str = ""  # Text chunk to append


@dataclass
class TextMessageEndEvent(BaseEvent):
    """Signals the end of a text message."""
    message_id: str = ""


@dataclass
class ToolCallStartEvent(BaseEvent):
    """Signals the start of a tool call."""
    tool_call_id: str = ""
    tool_call_name: str = ""
    parent_message_id: str | None = None


@dataclass
class ToolCallArgsEvent(BaseEvent):
    """Carries a chunk of tool call arguments."""
    tool_call_id: str = ""
    delta: str = ""  # JSON fragment to append
    message_id: str | None = None


@dataclass
class ToolCallEndEvent(BaseEvent):
    """Signals the end of a tool call."""
    tool_call_id: str = ""
    message_id: str | None = None


@dataclass
class ToolCallResultEvent(BaseEvent):
    """Contains the result of a tool call."""
    tool_call_id: str = ""
    message_id: str = ""
    content: str = ""  # JSON string of the result
    role: str | None = None


@dataclass
class StateSnapshotEvent(BaseEvent):
    """Full replacement of the shared agent state."""
    snapshot: dict[str, Any] = field(default_factory=dict)


@dataclass
class StateDeltaEvent(BaseEvent):
    """Incremental state update as a list of JSON Patch operations."""
    delta: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class MessagesSnapshotEvent(BaseEvent):
    """Full replacement of the conversation message list."""
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CustomEvent(BaseEvent, Generic[ValueT]):
    """Application-defined extension event, discriminated by ``name``."""
    name: str = ""
    value: ValueT | None = None


@dataclass
class RawEvent(BaseEvent):
    """Raw event for unhandled or unknown event types."""
    data: dict[str, Any] | None = None


AgUiEvent = (
    RunStartedEvent
    | RunFinishedEvent
    | RunErrorEvent
    | StepStartedEvent
    | StepFinishedEvent
    | TextMessageStartEvent
    | TextMessageContentEvent
    | TextMessageEndEvent
    | ToolCallStartEvent
    | ToolCallArgsEvent
    | ToolCallEndEvent
    | ToolCallResultEvent
    | StateSnapshotEvent
    | StateDeltaEvent
    | MessagesSnapshotEvent
    | CustomEvent
    | RawEvent
)


def _first(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key, accepting legacy aliases of a field."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def parse_event(data: dict[str, Any]) -> BaseEvent:
    """
    Parse a raw JSON event dict into a typed AG-UI event.

    Args:
        data: Raw JSON dict from the SSE stream

    Returns:
        Typed event object
    """
    event_type_str = data.get("type", "")
    timestamp = data.get("timestamp")
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        timestamp = None

    try:
        event_type = EventType(event_type_str)
    except ValueError:
        # Unknown event type - return as raw
        return RawEvent(type=EventType.RAW, timestamp=timestamp, raw_data=data, data=data)

    common: dict[str, Any] = {"type": event_type, "timestamp": timestamp, "raw_data": data}

    # Parse based on event type
    if event_type == EventType.RUN_STARTED:
        return RunStartedEvent(
            **common,
            thread_id=data.get("threadId"),
            run_id=data.get("runId"),
        )

    elif event_type == EventType.RUN_FINISHED:
        return RunFinishedEvent(
            **common,
            thread_id=data.get("threadId"),
            run_id=data.get("runId"),
            result=data.get("result"),
        )

    elif event_type == EventType.RUN_ERROR:
        return RunErrorEvent(
            **common,
            message=_as_text(_first(data, "message", "error")),
            code=data.get("code"),
        )

    elif event_type == EventType.STEP_STARTED:
        return StepStartedEvent(**common, step_name=data.get("stepName"))

    elif event_type == EventType.STEP_FINISHED:
        return StepFinishedEvent(**common, step_name=data.get("stepName"))

    elif event_type == EventType.TEXT_MESSAGE_START:
        return TextMessageStartEvent(
            **common,
            message_id=_as_text(data.get("messageId")),
            role=data.get("role") or "assistant",
        )

    elif event_type == EventType.TEXT_MESSAGE_CONTENT:
        return TextMessageContentEvent(
            **common,
            message_id=_as_text(data.get("messageId")),
            delta=_as_text(data.get("delta")),
        )

    elif event_type == EventType.TEXT_MESSAGE_END:
        return TextMessageEndEvent(**common, message_id=_as_text(data.get("messageId")))

    elif event_type == EventType.TOOL_CALL_START:
        return ToolCallStartEvent(
            **common,
            tool_call_id=_as_text(data.get("toolCallId")),
            tool_call_name=_as_text(_first(data, "toolCallName", "toolName")),
            parent_message_id=_first(data, "parentMessageId", "messageId"),
        )

    elif event_type == EventType.TOOL_CALL_ARGS:
        return ToolCallArgsEvent(
            **common,
            tool_call_id=_as_text(data.get("toolCallId")),
            delta=_as_text(_first(data, "delta", "argsDelta")),
            message_id=data.get("messageId"),
        )

    elif event_type == EventType.TOOL_CALL_END:
        return ToolCallEndEvent(
            **common,
            tool_call_id=_as_text(data.get("toolCallId")),
            message_id=data.get("messageId"),
        )

    elif event_type == EventType.TOOL_CALL_RESULT:
        return ToolCallResultEvent(
            **common,
            tool_call_id=_as_text(data.get("toolCallId")),
            message_id=_as_text(data.get("messageId")),
            content=_as_text(_first(data, "content", "result")),
            role=data.get("role"),
        )

    elif event_type == EventType.STATE_SNAPSHOT:
        snapshot = data.get("snapshot")
        return StateSnapshotEvent(
            **common,
            snapshot=snapshot if isinstance(snapshot, dict) else {},
        )

    elif event_type == EventType.STATE_DELTA:
        delta = data.get("delta")
        return StateDeltaEvent(
            **common,
            delta=[op for op in delta if isinstance(op, dict)] if isinstance(delta, list) else [],
        )

    elif event_type == EventType.MESSAGES_SNAPSHOT:
        messages = data.get("messages")
        return MessagesSnapshotEvent(
            **common,
            messages=[m for m in messages if isinstance(m, dict)] if isinstance(messages, list) else [],
        )

    elif event_type == EventType.CUSTOM:
        return CustomEvent(
            **common,
            name=_as_text(data.get("name")),
            value=data.get("value"),
        )

    else:
        # RAW passthrough
        return RawEvent(**common, data=data.get("event", data))


__all__ = [
    "AgUiEvent",
    "BaseEvent",
    "ConnectionStatus",
    "CustomEvent",
    "EventType",
    "MessagesSnapshotEvent",
    "RawEvent",
    "RunErrorEvent",
    "RunFinishedEvent",
    "RunStartedEvent",
    "StateDeltaEvent",
    "StateSnapshotEvent",
    "StepFinishedEvent",
    "StepStartedEvent",
    "TextMessageContentEvent",
    "TextMessageEndEvent",
    "TextMessageStartEvent",
    "ToolCallArgsEvent",
    "ToolCallEndEvent",
    "ToolCallResultEvent",
    "ToolCallStartEvent",
    "Unsubscribe",
    "parse_event",
]
