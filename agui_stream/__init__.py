"""
AG-UI protocol event stream client.

Consumes AG-UI Server-Sent Events from an agent backend, reconnecting with
exponential backoff, and turns the frames into typed events. Events are routed
to subscribers and folded into session state (snapshots plus JSON Patch
deltas) and complete text messages and tool calls.

Exposes a CLI via ``python -m agui_stream``.
"""

from __future__ import annotations

from .buffer import (
    CompletedMessage,
    MessageBuffer,
    ToolCallBuffer,
    ToolCallState,
    bind_message_aggregation,
    bind_tool_aggregation,
    parse_message_id,
)
from .config import StreamConfig, load_stream_config
from .connection import Connection, ErrorContext, ReconnectPolicy, compute_backoff_delay
from .errors import (
    AgUiStreamError,
    InvalidTransitionError,
    ParseError,
    PatchApplyError,
    PatchTestFailed,
    ReconnectExhausted,
    TransportError,
)
from .parser import parse_custom_event, parse_frame, parse_frames
from .patch import JsonPatchOperation, apply_json_patch, validate_json_patch
from .router import EventRouter
from .state import SessionState, StateStore, bind_state_store
from .stream import ConnectionMetrics, EventStream
from .transport import HttpxTransport, Transport
from .types import (
    BaseEvent,
    ConnectionStatus,
    CustomEvent,
    EventType,
    MessagesSnapshotEvent,
    RawEvent,
    RunErrorEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    StepFinishedEvent,
    StepStartedEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    parse_event,
)

__all__ = [
    "AgUiStreamError",
    "BaseEvent",
    "CompletedMessage",
    "Connection",
    "ConnectionMetrics",
    "ConnectionStatus",
    "CustomEvent",
    "ErrorContext",
    "EventRouter",
    "EventStream",
    "EventType",
    "HttpxTransport",
    "InvalidTransitionError",
    "JsonPatchOperation",
    "MessageBuffer",
    "MessagesSnapshotEvent",
    "ParseError",
    "PatchApplyError",
    "PatchTestFailed",
    "RawEvent",
    "ReconnectExhausted",
    "ReconnectPolicy",
    "RunErrorEvent",
    "RunFinishedEvent",
    "RunStartedEvent",
    "SessionState",
    "StateDeltaEvent",
    "StateSnapshotEvent",
    "StateStore",
    "StepFinishedEvent",
    "StepStartedEvent",
    "StreamConfig",
    "TextMessageContentEvent",
    "TextMessageEndEvent",
    "TextMessageStartEvent",
    "ToolCallArgsEvent",
    "ToolCallBuffer",
    "ToolCallEndEvent",
    "ToolCallResultEvent",
    "ToolCallStartEvent",
    "ToolCallState",
    "Transport",
    "TransportError",
    "apply_json_patch",
    "bind_message_aggregation",
    "bind_state_store",
    "bind_tool_aggregation",
    "compute_backoff_delay",
    "get_version",
    "load_stream_config",
    "parse_custom_event",
    "parse_event",
    "parse_frame",
    "parse_frames",
    "parse_message_id",
    "validate_json_patch",
]


def get_version() -> str:
    """Return the package version."""
    try:
        from importlib.metadata import version

        return version("agui-stream")
    except Exception:  # pragma: no cover - metadata optional in dev installs
        return "0.1.0"
