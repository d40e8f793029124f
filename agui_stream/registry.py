"""Per-instance callback registries used by every subscribable component."""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Iterator, TypeVar

LOGGER = logging.getLogger(__name__)

CallbackT = TypeVar("CallbackT", bound=Callable[..., Any])


class CallbackRegistry(Generic[CallbackT]):
    """
    Ordered set of callbacks with isolated invocation.

    Registering the same callable twice keeps a single entry. ``emit`` calls
    every callback in registration order; an exception raised by one callback
    is logged and does not prevent the others from running.
    """

    def __init__(self, name: str = "callback") -> None:
        self.name = name
        self._callbacks: dict[CallbackT, None] = {}

    def add(self, callback: CallbackT) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        self._callbacks[callback] = None

        def unsubscribe() -> None:
            self._callbacks.pop(callback, None)

        return unsubscribe

    def discard(self, callback: CallbackT) -> None:
        self._callbacks.pop(callback, None)

    def clear(self) -> None:
        self._callbacks.clear()

    def emit(self, *args: Any) -> list[BaseException]:
        """
        Invoke every callback with ``args``.

        Returns:
            The exceptions raised by failing callbacks, in call order.
        """
        failures: list[BaseException] = []
        # Snapshot so callbacks may unsubscribe themselves mid-dispatch
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception as e:
                LOGGER.error(f"{self.name} error in {callback!r}: {e}", exc_info=True)
                failures.append(e)
        return failures

    def __len__(self) -> int:
        return len(self._callbacks)

    def __iter__(self) -> Iterator[CallbackT]:
        return iter(list(self._callbacks))

    def __contains__(self, callback: object) -> bool:
        return callback in self._callbacks


def safe_call(callback: Callable[..., Any] | None, *args: Any, label: str = "callback") -> None:
    """Call an optional callback, logging instead of propagating its errors."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as e:
        LOGGER.error(f"{label} error: {e}", exc_info=True)


__all__ = ["CallbackRegistry", "safe_call"]
