"""
AG-UI frame parser.

Turns one transport payload line into a typed AG-UI event. The functions in
this module hold no state and never touch the connection; a malformed frame
is reported as ``ParseError`` and the caller decides what to do with it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from .errors import ParseError
from .types import BaseEvent, CustomEvent, EventType, parse_event

LOGGER = logging.getLogger(__name__)

# Payloads some servers emit as keep-alives or end-of-stream markers
HEARTBEAT_MARKERS = frozenset({"[DONE]", "ping", "heartbeat", "keep-alive", "keepalive"})


def _strip_data_prefix(line: str) -> str:
    if line.startswith("data:"):
        return line[5:]
    return line


def parse_frame(line: str) -> BaseEvent | None:
    """
    Decode one SSE data payload into an AG-UI event.

    Args:
        line: Payload of a ``data:`` line; a leftover ``data:`` prefix is
            tolerated and removed.

    Returns:
        The typed event, or None for blank, comment, and heartbeat frames.

    Raises:
        ParseError: if the payload is not a JSON object with a string ``type``.
    """
    payload = _strip_data_prefix(line).strip()

    # Skip empty lines, comments and keep-alives
    if not payload or payload.startswith(":") or payload in HEARTBEAT_MARKERS:
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON frame: {e.msg}", frame=payload) from e

    if not isinstance(data, dict):
        raise ParseError(
            f"Frame must be a JSON object, got {type(data).__name__}", frame=payload
        )

    if not isinstance(data.get("type"), str):
        raise ParseError("Frame is missing a string 'type' field", frame=payload)

    return parse_event(data)


def parse_frames(lines: Iterable[str]) -> list[BaseEvent]:
    """Parse buffered frames, dropping non-events and malformed frames."""
    events: list[BaseEvent] = []
    for line in lines:
        try:
            event = parse_frame(line)
        except ParseError as e:
            LOGGER.debug(f"Skipping malformed frame: {e}")
            continue
        if event is not None:
            events.append(event)
    return events


def parse_custom_event(event: BaseEvent) -> Any:
    """Return the application payload carried by a CUSTOM event."""
    if event.type == EventType.CUSTOM and isinstance(event, CustomEvent):
        return event.value
    return getattr(event, "value", None)


__all__ = [
    "HEARTBEAT_MARKERS",
    "parse_custom_event",
    "parse_frame",
    "parse_frames",
]
