from __future__ import annotations

from agui_stream.router import EventRouter
from agui_stream.types import BaseEvent, CustomEvent, EventType, RunStartedEvent


def _custom(name: str, value: object = None) -> CustomEvent:
    return CustomEvent(type=EventType.CUSTOM, name=name, value=value)


def test_routes_by_type_then_custom_name_then_any() -> None:
    calls: list[str] = []
    router = EventRouter(
        standard={EventType.CUSTOM: lambda e: calls.append("type")},
        custom={"app.progress": lambda e: calls.append(f"custom:{e.value}")},
        on_any=lambda e: calls.append("any"),
    )

    router.route(_custom("app.progress", 50))
    router.route(_custom("app.other"))

    assert calls == ["type", "custom:50", "any", "type", "any"]


def test_string_event_types_are_accepted() -> None:
    seen: list[BaseEvent] = []
    router = EventRouter()
    router.on("RUN_STARTED", seen.append)

    router.route(RunStartedEvent(type=EventType.RUN_STARTED, run_id="r1"))

    assert len(seen) == 1


def test_unsubscribe_removes_only_that_handler() -> None:
    calls: list[str] = []
    router = EventRouter()
    unsubscribe_a = router.on(EventType.RUN_STARTED, lambda e: calls.append("a"))
    router.on(EventType.RUN_STARTED, lambda e: calls.append("b"))

    unsubscribe_a()
    unsubscribe_a()
    router.route(RunStartedEvent(type=EventType.RUN_STARTED))

    assert calls == ["b"]
    assert router.handler_count() == 1


def test_failing_handler_is_isolated_and_reported() -> None:
    reported: list[tuple[Exception, BaseEvent]] = []
    calls: list[str] = []

    def broken(event: BaseEvent) -> None:
        raise ValueError("bad handler")

    router = EventRouter(on_handler_error=lambda error, event: reported.append((error, event)))
    router.on(EventType.RUN_STARTED, broken)
    router.on(EventType.RUN_STARTED, lambda e: calls.append("after"))
    router.on_any(lambda e: calls.append("any"))

    event = RunStartedEvent(type=EventType.RUN_STARTED)
    router.route(event)

    assert calls == ["after", "any"]
    assert len(reported) == 1
    assert isinstance(reported[0][0], ValueError)
    assert reported[0][1] is event


def test_batch_registration_returns_combined_unsubscribe() -> None:
    router = EventRouter()
    unsubscribe_standard = router.register_standard(
        {
            EventType.RUN_STARTED: lambda e: None,
            EventType.RUN_FINISHED: lambda e: None,
        }
    )
    unsubscribe_custom = router.register_custom({"a": lambda e: None, "b": lambda e: None})

    assert router.handler_count() == 4
    unsubscribe_standard()
    assert router.handler_count() == 2
    unsubscribe_custom()
    assert router.handler_count() == 0


def test_clear_drops_everything() -> None:
    router = EventRouter(on_any=lambda e: None)
    router.on_custom("x", lambda e: None)

    router.clear()

    assert router.handler_count() == 0
