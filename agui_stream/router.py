"""
Event router.

Routes AG-UI events to registered handlers by event type, by CUSTOM event
name, and to catch-all handlers. Handlers run synchronously in registration
order; a failing handler is logged and reported on its own and never stops
the remaining handlers.

Usage:
    router = EventRouter(
        standard={
            EventType.RUN_STARTED: lambda e: print("started", e.run_id),
            EventType.RUN_FINISHED: lambda e: print("finished"),
        },
        custom={"app.progress": lambda e: print(e.value)},
    )
    router.route(event)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from .registry import CallbackRegistry
from .types import BaseEvent, CustomEvent, EventType, Unsubscribe

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]
HandlerErrorHook = Callable[[Exception, BaseEvent], None]


def _combine(unsubscribes: list[Unsubscribe]) -> Unsubscribe:
    def unsubscribe_all() -> None:
        for unsubscribe in unsubscribes:
            unsubscribe()

    return unsubscribe_all


class EventRouter:
    """Stateless dispatch table from event type / custom name to handlers."""

    def __init__(
        self,
        *,
        standard: Mapping[EventType | str, EventHandler] | None = None,
        custom: Mapping[str, EventHandler] | None = None,
        on_any: EventHandler | None = None,
        on_handler_error: HandlerErrorHook | None = None,
    ) -> None:
        self._type_handlers: dict[EventType, CallbackRegistry[EventHandler]] = {}
        self._custom_handlers: dict[str, CallbackRegistry[EventHandler]] = {}
        self._any_handlers: CallbackRegistry[EventHandler] = CallbackRegistry("Any handler")
        self._on_handler_error = on_handler_error

        if standard:
            self.register_standard(standard)
        if custom:
            self.register_custom(custom)
        if on_any is not None:
            self.on_any(on_any)

    def route(self, event: BaseEvent) -> None:
        """Deliver ``event`` to type, custom-name and catch-all handlers."""
        handlers = self._type_handlers.get(event.type)
        if handlers:
            self._report(handlers.emit(event), event)

        if event.type == EventType.CUSTOM and isinstance(event, CustomEvent):
            custom = self._custom_handlers.get(event.name)
            if custom:
                self._report(custom.emit(event), event)

        self._report(self._any_handlers.emit(event), event)

    def on(self, event_type: EventType | str, handler: EventHandler) -> Unsubscribe:
        """Register a handler for one AG-UI event type."""
        key = EventType(event_type)
        registry = self._type_handlers.get(key)
        if registry is None:
            registry = self._type_handlers[key] = CallbackRegistry(f"{key.value} handler")
        return registry.add(handler)

    def on_custom(self, name: str, handler: EventHandler) -> Unsubscribe:
        """Register a handler for CUSTOM events carrying ``name``."""
        registry = self._custom_handlers.get(name)
        if registry is None:
            registry = self._custom_handlers[name] = CallbackRegistry(f"Custom '{name}' handler")
        return registry.add(handler)

    def on_any(self, handler: EventHandler) -> Unsubscribe:
        return self._any_handlers.add(handler)

    def register_standard(self, handlers: Mapping[EventType | str, EventHandler]) -> Unsubscribe:
        """Batch-register type handlers; returns one combined unsubscribe."""
        return _combine(
            [self.on(event_type, handler) for event_type, handler in handlers.items() if handler]
        )

    def register_custom(self, handlers: Mapping[str, EventHandler]) -> Unsubscribe:
        """Batch-register custom-name handlers; returns one combined unsubscribe."""
        return _combine(
            [self.on_custom(name, handler) for name, handler in handlers.items() if handler]
        )

    def clear(self) -> None:
        self._type_handlers.clear()
        self._custom_handlers.clear()
        self._any_handlers.clear()

    def handler_count(self) -> int:
        return (
            sum(len(r) for r in self._type_handlers.values())
            + sum(len(r) for r in self._custom_handlers.values())
            + len(self._any_handlers)
        )

    def _report(self, failures: list[BaseException], event: BaseEvent) -> None:
        if self._on_handler_error is None:
            return
        for failure in failures:
            try:
                self._on_handler_error(failure, event)
            except Exception as e:
                LOGGER.error(f"Handler error hook failed: {e}")


__all__ = ["EventHandler", "EventRouter"]
