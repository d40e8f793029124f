"""
Incremental Server-Sent Events field decoder.

SSE format:
    event: <event-type>  (optional)
    id: <event-id>       (optional)
    data: <payload>
    <blank line>

Lines starting with ``:`` are comments and are used by servers as
keep-alive pings.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class SSEMessage:
    """One dispatched SSE message."""

    data: str | None = None
    event: str | None = None
    id: str | None = None


@dataclass
class SSEDecoder:
    """
    Turns raw SSE lines into messages, one line at a time.

    ``feed`` returns a message when a blank line completes one; ``flush``
    returns whatever is pending when the stream ends without a trailing
    blank line.
    """

    comments_seen: int = 0
    _data: list[str] = field(default_factory=list)
    _event: str | None = None
    _id: str | None = None
    _has_fields: bool = False

    def feed(self, line: str) -> SSEMessage | None:
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            self.comments_seen += 1
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            # Ids containing NUL are ignored (WHATWG event stream rules)
            if "\0" not in value:
                self._id = value
        else:
            # retry and unknown fields carry no event payload
            return None

        self._has_fields = True
        return None

    def flush(self) -> SSEMessage | None:
        return self._dispatch()

    def _dispatch(self) -> SSEMessage | None:
        if not self._has_fields:
            return None
        message = SSEMessage(
            data="\n".join(self._data) if self._data else None,
            event=self._event,
            id=self._id,
        )
        self._data = []
        self._event = None
        self._id = None
        self._has_fields = False
        return message


__all__ = ["SSEDecoder", "SSEMessage"]
