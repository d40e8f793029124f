"""
Session state store with snapshot/delta support.

``custom_state`` only changes through ``set_snapshot`` (wholesale replace) or
``apply_delta`` (ordered JSON Patch batch). Each call swaps in a new
``SessionState`` and notifies subscribers once.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Protocol

from .errors import PatchTestFailed
from .patch import JsonPatchOperation, apply_operations
from .registry import CallbackRegistry
from .types import (
    EventType,
    RunErrorEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
    Unsubscribe,
)

LOGGER = logging.getLogger(__name__)

StateListener = Callable[["SessionState"], None]


@dataclass(frozen=True)
class SessionState:
    """Immutable view of the session: run status plus agent-defined state."""

    status: str = "idle"
    custom_state: dict[str, Any] = field(default_factory=dict)


class StateStore:
    """
    Holds the derived session state.

    Args:
        initial_state: Starting state (defaults to idle with an empty mapping)
        strict_test: Abort a delta batch when one of its ``test`` operations
            fails instead of ignoring the test
    """

    def __init__(self, initial_state: SessionState | None = None, *, strict_test: bool = False) -> None:
        self._state = initial_state or SessionState()
        self.strict_test = strict_test
        self._listeners: CallbackRegistry[StateListener] = CallbackRegistry("State listener")

    def get_state(self) -> SessionState:
        return self._state

    @property
    def custom_state(self) -> dict[str, Any]:
        return self._state.custom_state

    def set_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        """Replace ``custom_state`` wholesale with a private copy of ``snapshot``."""
        if not isinstance(snapshot, Mapping):
            raise TypeError(f"State snapshot must be a mapping, got {type(snapshot).__name__}")
        self._state = replace(self._state, custom_state=copy.deepcopy(dict(snapshot)))
        self._notify()

    def apply_delta(self, delta: Iterable[Mapping[str, Any] | JsonPatchOperation]) -> None:
        """Apply a JSON Patch batch in order and swap the result in atomically."""
        try:
            custom_state, applied = apply_operations(
                self._state.custom_state, delta, strict_test=self.strict_test
            )
        except PatchTestFailed as e:
            LOGGER.warning(f"Discarding state delta: {e}")
            return

        LOGGER.debug(f"Applied {applied} state patch operation(s)")
        self._state = replace(self._state, custom_state=custom_state)
        self._notify()

    def set_status(self, status: str) -> None:
        if status == self._state.status:
            return
        self._state = replace(self._state, status=status)
        self._notify()

    def subscribe(self, callback: StateListener) -> Unsubscribe:
        """Register a listener called with the full new state after each change."""
        return self._listeners.add(callback)

    def _notify(self) -> None:
        self._listeners.emit(self._state)


class _EventSource(Protocol):
    def on(self, event_type: EventType | str, handler: Callable[[Any], None]) -> Unsubscribe: ...


def bind_state_store(source: _EventSource, store: StateStore) -> Unsubscribe:
    """
    Feed state and run lifecycle events from a router or stream into ``store``.

    Returns:
        A function that removes every handler registered here.
    """

    def on_snapshot(event: StateSnapshotEvent) -> None:
        store.set_snapshot(event.snapshot)

    def on_delta(event: StateDeltaEvent) -> None:
        store.apply_delta(event.delta)

    def on_run_error(event: RunErrorEvent) -> None:
        LOGGER.warning(f"Run failed: {event.message}")
        store.set_status("error")

    unsubscribes = [
        source.on(EventType.STATE_SNAPSHOT, on_snapshot),
        source.on(EventType.STATE_DELTA, on_delta),
        source.on(EventType.RUN_STARTED, lambda _: store.set_status("running")),
        source.on(EventType.RUN_FINISHED, lambda _: store.set_status("completed")),
        source.on(EventType.RUN_ERROR, on_run_error),
    ]

    def unsubscribe() -> None:
        for unsub in unsubscribes:
            unsub()

    return unsubscribe


__all__ = ["SessionState", "StateStore", "bind_state_store"]
