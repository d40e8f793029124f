"""
SSE connection management with automatic reconnection.

The connection owns one transport socket at a time and drives the status
state machine:

    disconnected/error --connect()--> connecting --open--> connected
    connecting/connected --failure--> reconnecting --delay--> connecting
    connecting/connected --failure, budget spent--> error
    any --disconnect()--> disconnected
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from .config import StreamConfig
from .errors import InvalidTransitionError, ReconnectExhausted, TransportError
from .registry import CallbackRegistry, safe_call
from .sse import SSEDecoder, SSEMessage
from .transport import HttpxTransport, Transport
from .types import ConnectionStatus, Unsubscribe

LOGGER = logging.getLogger(__name__)

S = ConnectionStatus

_TRANSITIONS: dict[ConnectionStatus, frozenset[ConnectionStatus]] = {
    S.DISCONNECTED: frozenset({S.CONNECTING}),
    S.CONNECTING: frozenset({S.CONNECTED, S.RECONNECTING, S.ERROR, S.DISCONNECTED}),
    S.CONNECTED: frozenset({S.RECONNECTING, S.ERROR, S.DISCONNECTED}),
    S.RECONNECTING: frozenset({S.CONNECTING, S.ERROR, S.DISCONNECTED}),
    S.ERROR: frozenset({S.CONNECTING, S.DISCONNECTED}),
}


def transition(current: ConnectionStatus, target: ConnectionStatus) -> ConnectionStatus:
    """
    Validate a status change and return the new status.

    Staying in the same status is always allowed.

    Raises:
        InvalidTransitionError: if the state machine has no such edge.
    """
    if current == target or target in _TRANSITIONS[current]:
        return target
    raise InvalidTransitionError(f"Illegal connection transition {current.value} -> {target.value}")


def compute_backoff_delay(
    attempt: int,
    *,
    initial_delay_ms: float = 1000,
    backoff_multiplier: float = 2,
    max_delay_ms: float = 30000,
    jitter_ms: float = 1000,
    rng: random.Random | None = None,
) -> float:
    """Exponential backoff with additive jitter, capped at ``max_delay_ms``."""
    if attempt < 1:
        raise ValueError("attempt numbers start at 1")
    jitter = (rng or random).random() * jitter_ms if jitter_ms > 0 else 0.0
    return min(max_delay_ms, initial_delay_ms * backoff_multiplier ** (attempt - 1) + jitter)


class ReconnectPolicy:
    """Tracks the retry budget of one connection."""

    def __init__(
        self,
        *,
        max_attempts: int = 10,
        initial_delay_ms: float = 1000,
        backoff_multiplier: float = 2,
        max_delay_ms: float = 30000,
        jitter_ms: float = 1000,
        enabled: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        self.max_attempts = max_attempts
        self.initial_delay_ms = initial_delay_ms
        self.backoff_multiplier = backoff_multiplier
        self.max_delay_ms = max_delay_ms
        self.jitter_ms = jitter_ms
        self.enabled = enabled
        self.attempt = 0
        self._rng = rng

    @classmethod
    def from_config(cls, config: StreamConfig, rng: random.Random | None = None) -> "ReconnectPolicy":
        return cls(
            max_attempts=config.max_reconnect_attempts,
            initial_delay_ms=config.initial_delay_ms,
            backoff_multiplier=config.backoff_multiplier,
            max_delay_ms=config.max_delay_ms,
            jitter_ms=config.jitter_ms,
            enabled=config.auto_reconnect,
            rng=rng,
        )

    def next_delay(self) -> float | None:
        """Consume one attempt; None means the budget is exhausted."""
        if not self.enabled:
            return None
        self.attempt += 1
        if self.attempt > self.max_attempts:
            return None
        return compute_backoff_delay(
            self.attempt,
            initial_delay_ms=self.initial_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            max_delay_ms=self.max_delay_ms,
            jitter_ms=self.jitter_ms,
            rng=self._rng,
        )

    def reset(self) -> None:
        self.attempt = 0


@dataclass(slots=True)
class ErrorContext:
    """Where in the connection lifecycle an error happened."""

    connection_duration_ms: float
    reconnect_attempt: int
    status: ConnectionStatus
    generation: int
    last_event_id: str | None = None


MessageCallback = Callable[[str, int], None]
StatusCallback = Callable[[ConnectionStatus], None]
ErrorCallback = Callable[[Exception, ErrorContext], None]
ReconnectingCallback = Callable[[int, int, float], None]
ReconnectFailedCallback = Callable[[ErrorContext], None]


class Connection:
    """
    One logical SSE connection with bounded automatic recovery.

    ``connect()`` must be called from a running event loop; reading happens
    in a background task. Raw ``data`` payloads are handed to message
    listeners together with the generation of the socket that produced them.
    """

    def __init__(
        self,
        config: StreamConfig,
        *,
        transport: Transport | None = None,
        on_status_change: StatusCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_reconnecting: ReconnectingCallback | None = None,
        on_reconnect_failed: ReconnectFailedCallback | None = None,
        on_reconnected: Callable[[], None] | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._transport = transport or HttpxTransport(
            timeout=config.request_timeout_s,
            headers_as_query=config.headers_as_query,
        )
        self._on_status_change = on_status_change
        self._on_error = on_error
        self._on_reconnecting = on_reconnecting
        self._on_reconnect_failed = on_reconnect_failed
        self._on_reconnected = on_reconnected
        self._sleep = sleep
        self._clock = clock

        self._policy = ReconnectPolicy.from_config(config, rng=rng)
        self._status = ConnectionStatus.DISCONNECTED
        self._generation = 0
        # Bumped by connect()/disconnect(); a task whose epoch is stale must
        # not touch connection state any more.
        self._epoch = 0
        self._task: asyncio.Task[None] | None = None
        self._has_connected = False
        self._connected_at: float | None = None
        self._last_event_id: str | None = None

        self._message_listeners: CallbackRegistry[MessageCallback] = CallbackRegistry("Message listener")
        self._status_listeners: CallbackRegistry[StatusCallback] = CallbackRegistry("Status listener")
        self._error_listeners: CallbackRegistry[ErrorCallback] = CallbackRegistry("Error listener")

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def reconnect_attempt(self) -> int:
        return self._policy.attempt

    @property
    def last_event_id(self) -> str | None:
        return self._last_event_id

    def error_context(self) -> ErrorContext:
        duration = 0.0
        if self._connected_at is not None:
            duration = (self._clock() - self._connected_at) * 1000
        return ErrorContext(
            connection_duration_ms=duration,
            reconnect_attempt=self._policy.attempt,
            status=self._status,
            generation=self._generation,
            last_event_id=self._last_event_id,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_message(self, callback: MessageCallback) -> Unsubscribe:
        return self._message_listeners.add(callback)

    def on_status_change(self, callback: StatusCallback) -> Unsubscribe:
        return self._status_listeners.add(callback)

    def on_error(self, callback: ErrorCallback) -> Unsubscribe:
        return self._error_listeners.add(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start connecting; a no-op unless disconnected or in error."""
        if self._status not in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
            LOGGER.debug(f"connect() ignored while {self._status.value}")
            return

        loop = asyncio.get_running_loop()
        self._epoch += 1
        self._policy.reset()
        self._set_status(ConnectionStatus.CONNECTING)
        self._task = loop.create_task(self._run(self._epoch), name=f"agui-connection-{self._epoch}")

    def disconnect(self) -> None:
        """Close the socket and cancel any pending reconnect. Idempotent."""
        self._epoch += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._policy.reset()
        self._connected_at = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    def reconnect(self) -> None:
        """Drop the current socket and start over with a fresh retry budget."""
        self.disconnect()
        self.connect()

    async def wait_closed(self) -> None:
        """
        Wait until the background task ends (disconnect or terminal error).

        Follows the replacement task when ``reconnect()`` runs meanwhile.
        """
        task = self._task
        while task is not None:
            await asyncio.wait({task})
            if self._task is task:
                return
            task = self._task

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_status(self, status: ConnectionStatus) -> None:
        new_status = transition(self._status, status)
        if new_status == self._status:
            return
        LOGGER.debug(f"Connection {self._status.value} -> {new_status.value}")
        self._status = new_status
        self._status_listeners.emit(new_status)
        safe_call(self._on_status_change, new_status, label="on_status_change")

    def _emit_error(self, error: Exception, context: ErrorContext) -> None:
        self._error_listeners.emit(error, context)
        safe_call(self._on_error, error, context, label="on_error")

    async def _run(self, epoch: int) -> None:
        while True:
            try:
                await self._read_socket(epoch)
                error: TransportError = TransportError("SSE stream closed by server")
            except TransportError as e:
                error = e
            except Exception as e:
                LOGGER.exception("Unexpected error while reading SSE stream")
                error = TransportError(f"Unexpected transport failure: {e}")
                error.__cause__ = e

            if epoch != self._epoch:
                return

            LOGGER.warning(f"SSE connection lost: {error}")
            self._emit_error(error, self.error_context())
            # Error handlers may have called disconnect() or reconnect()
            if epoch != self._epoch:
                return
            self._connected_at = None

            delay = self._policy.next_delay()
            if delay is None:
                self._fail(epoch)
                return

            attempt = self._policy.attempt
            self._set_status(ConnectionStatus.RECONNECTING)
            if epoch != self._epoch:
                return
            LOGGER.info(
                f"Reconnecting in {delay:.0f}ms (attempt {attempt}/{self._policy.max_attempts})"
            )
            safe_call(
                self._on_reconnecting, attempt, self._policy.max_attempts, delay, label="on_reconnecting"
            )
            await self._sleep(delay / 1000)

            if epoch != self._epoch:
                return
            self._set_status(ConnectionStatus.CONNECTING)

    def _fail(self, epoch: int) -> None:
        attempts = max(self._policy.attempt - 1, 0) if self._policy.enabled else 0
        self._set_status(ConnectionStatus.ERROR)
        if epoch != self._epoch:
            return
        context = self.error_context()
        LOGGER.error(f"Giving up on {self.config.url} after {attempts} reconnect attempt(s)")
        self._emit_error(ReconnectExhausted(attempts, self._last_event_id), context)
        safe_call(self._on_reconnect_failed, context, label="on_reconnect_failed")

    async def _read_socket(self, epoch: int) -> None:
        async with self._transport.open(
            self.config.url,
            headers=dict(self.config.headers),
            last_event_id=self._last_event_id,
        ) as lines:
            # Handshake resolved after a disconnect: drop it
            if epoch != self._epoch:
                return

            self._generation += 1
            generation = self._generation
            self._policy.reset()
            self._connected_at = self._clock()
            self._set_status(ConnectionStatus.CONNECTED)
            if epoch != self._epoch:
                return
            if self._has_connected:
                LOGGER.info(f"Reconnected to {self.config.url} (generation {generation})")
                safe_call(self._on_reconnected, label="on_reconnected")
            self._has_connected = True

            decoder = SSEDecoder()
            async for line in self._watch(lines):
                message = decoder.feed(line)
                if message is not None:
                    self._dispatch(message, generation)
                if epoch != self._epoch:
                    return

            trailing = decoder.flush()
            if trailing is not None:
                self._dispatch(trailing, generation)

    async def _watch(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        """Yield lines, failing the socket when the heartbeat goes quiet."""
        timeout = self.config.heartbeat_timeout_s
        iterator = aiter(lines)
        while True:
            try:
                if timeout is None:
                    line = await anext(iterator)
                else:
                    line = await asyncio.wait_for(anext(iterator), timeout)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError as e:
                raise TransportError(f"No data received for {timeout}s") from e
            yield line

    def _dispatch(self, message: SSEMessage, generation: int) -> None:
        if message.id is not None:
            self._last_event_id = message.id
        if message.data is not None:
            self._message_listeners.emit(message.data, generation)


__all__ = [
    "Connection",
    "ErrorContext",
    "ReconnectPolicy",
    "compute_backoff_delay",
    "transition",
]
