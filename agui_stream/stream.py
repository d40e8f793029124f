"""
High-level AG-UI event stream.

Wraps a ``Connection``, parses every data frame into a typed event, stamps it
with the socket generation and a stream-local sequence number, and routes it
to subscribers. Frames from a superseded socket are dropped before dispatch.

Usage:
    stream = EventStream(StreamConfig(url="http://localhost:8000/events"))
    stream.on(EventType.TEXT_MESSAGE_CONTENT, lambda e: print(e.delta, end=""))
    stream.connect()
    await stream.wait_closed()

Or as an async iterator:
    async for event in stream.events():
        ...
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from .config import StreamConfig
from .connection import (
    Connection,
    ErrorCallback,
    ErrorContext,
    ReconnectFailedCallback,
    ReconnectingCallback,
    StatusCallback,
)
from .errors import ParseError
from .parser import parse_frame
from .registry import CallbackRegistry, safe_call
from .router import EventHandler, EventRouter
from .transport import Transport
from .types import BaseEvent, ConnectionStatus, EventType, Unsubscribe

LOGGER = logging.getLogger(__name__)

_STOPPED = (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR)


@dataclass
class ConnectionMetrics:
    """Running counters for one stream object. Never reset by reconnects."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    total_connect_attempts: int = 0
    successful_connections: int = 0
    current_reconnect_attempt: int = 0
    messages_received: int = 0
    parse_errors: int = 0
    stale_events_dropped: int = 0
    last_connected_at: float | None = None
    last_error_at: float | None = None
    last_event_at: float | None = None


class EventStream:
    """Subscribable AG-UI event stream over one reconnecting SSE connection."""

    def __init__(
        self,
        config: StreamConfig | str,
        *,
        transport: Transport | None = None,
        router: EventRouter | None = None,
        on_status_change: StatusCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_reconnecting: ReconnectingCallback | None = None,
        on_reconnect_failed: ReconnectFailedCallback | None = None,
        on_reconnected: Callable[[], None] | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(config, str):
            config = StreamConfig(url=config)
        self.config = config
        self._router = router or EventRouter()
        self._metrics = ConnectionMetrics()
        self._sequence = 0
        self._on_status_change = on_status_change
        self._on_error = on_error
        self._status_handlers: CallbackRegistry[StatusCallback] = CallbackRegistry("Status handler")
        self._error_handlers: CallbackRegistry[ErrorCallback] = CallbackRegistry("Error handler")
        self._metrics_task: asyncio.Task[None] | None = None

        self._connection = Connection(
            config,
            transport=transport,
            on_status_change=self._handle_status,
            on_error=self._handle_error,
            on_reconnecting=on_reconnecting,
            on_reconnect_failed=on_reconnect_failed,
            on_reconnected=on_reconnected,
            rng=rng,
            sleep=sleep,
            clock=clock,
        )
        self._connection.on_message(self.feed)

    # ------------------------------------------------------------------
    # Connection control
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._connection.status

    @property
    def generation(self) -> int:
        return self._connection.generation

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def connection(self) -> Connection:
        return self._connection

    def connect(self) -> None:
        self._connection.connect()
        interval = self.config.metrics_log_interval_s
        if interval and self._metrics_task is None and self.status not in _STOPPED:
            self._metrics_task = asyncio.get_running_loop().create_task(self._log_metrics(interval))

    def disconnect(self) -> None:
        self._connection.disconnect()
        self._stop_metrics()

    def reconnect(self) -> None:
        self.disconnect()
        self.connect()

    async def wait_closed(self) -> None:
        await self._connection.wait_closed()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on(self, event_type: EventType | str, handler: EventHandler) -> Unsubscribe:
        """Subscribe to one AG-UI event type."""
        return self._router.on(event_type, handler)

    def on_custom(self, name: str, handler: EventHandler) -> Unsubscribe:
        """Subscribe to CUSTOM events by name."""
        return self._router.on_custom(name, handler)

    def on_any(self, handler: EventHandler) -> Unsubscribe:
        """Subscribe to every parsed event, in arrival order."""
        return self._router.on_any(handler)

    def on_status_change(self, handler: StatusCallback) -> Unsubscribe:
        """Subscribe to status changes; ``handler`` is called with the current status right away."""
        unsubscribe = self._status_handlers.add(handler)
        safe_call(handler, self.status, label="Status handler")
        return unsubscribe

    def on_error(self, handler: ErrorCallback) -> Unsubscribe:
        """Subscribe to parse and transport errors with their context."""
        return self._error_handlers.add(handler)

    def get_metrics(self) -> ConnectionMetrics:
        """Return a snapshot copy of the metrics."""
        return dataclasses.replace(
            self._metrics,
            status=self.status,
            current_reconnect_attempt=self._connection.reconnect_attempt,
        )

    async def events(self) -> AsyncIterator[BaseEvent]:
        """
        Yield events until the stream is disconnected or fails for good.

        Connects first if the stream is not already running.
        """
        queue: asyncio.Queue[BaseEvent | None] = asyncio.Queue()

        def on_status(status: ConnectionStatus) -> None:
            if status in _STOPPED:
                queue.put_nowait(None)

        unsubscribe_any = self.on_any(queue.put_nowait)
        unsubscribe_status = self._status_handlers.add(on_status)
        try:
            if self.status in _STOPPED:
                self.connect()
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            unsubscribe_any()
            unsubscribe_status()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def feed(self, data: str, generation: int) -> None:
        """Parse one data frame from socket ``generation`` and dispatch it."""
        self._metrics.messages_received += 1

        if generation < self._connection.generation:
            self._metrics.stale_events_dropped += 1
            LOGGER.debug(
                f"Dropping frame from stale generation {generation} "
                f"(current {self._connection.generation})"
            )
            return

        try:
            event = parse_frame(data)
        except ParseError as e:
            self._metrics.parse_errors += 1
            LOGGER.warning(f"Skipping malformed frame: {e}")
            self._notify_error(e, self._connection.error_context())
            return

        if event is None:
            return

        now = time.time()
        self._sequence += 1
        event.sequence = self._sequence
        event.generation = generation
        if event.timestamp is None:
            event.timestamp = int(now * 1000)
        self._metrics.last_event_at = now

        self._router.route(event)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_status(self, status: ConnectionStatus) -> None:
        if status == ConnectionStatus.CONNECTING:
            self._metrics.total_connect_attempts += 1
        elif status == ConnectionStatus.CONNECTED:
            self._metrics.successful_connections += 1
            self._metrics.last_connected_at = time.time()
        elif status in _STOPPED:
            self._stop_metrics()
        self._metrics.status = status

        safe_call(self._on_status_change, status, label="on_status_change")
        self._status_handlers.emit(status)

    def _handle_error(self, error: Exception, context: ErrorContext) -> None:
        self._metrics.last_error_at = time.time()
        self._notify_error(error, context)

    def _notify_error(self, error: Exception, context: ErrorContext) -> None:
        safe_call(self._on_error, error, context, label="on_error")
        self._error_handlers.emit(error, context)

    def _stop_metrics(self) -> None:
        task, self._metrics_task = self._metrics_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _log_metrics(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            m = self.get_metrics()
            LOGGER.info(
                f"Stream metrics: status={m.status.value} attempts={m.total_connect_attempts} "
                f"connected={m.successful_connections} received={m.messages_received} "
                f"parse_errors={m.parse_errors} stale={m.stale_events_dropped}"
            )


__all__ = ["ConnectionMetrics", "EventStream"]
