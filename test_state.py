from __future__ import annotations

import pytest

from agui_stream.errors import PatchApplyError
from agui_stream.patch import (
    JsonPatchOperation,
    apply_json_patch,
    get_pointer,
    parse_pointer,
    validate_json_patch,
)
from agui_stream.router import EventRouter
from agui_stream.state import SessionState, StateStore, bind_state_store
from agui_stream.types import (
    EventType,
    RunErrorEvent,
    RunFinishedEvent,
    RunStartedEvent,
    StateDeltaEvent,
    StateSnapshotEvent,
)


def test_ordered_replace_and_add() -> None:
    store = StateStore()
    store.set_snapshot({"count": 0})

    store.apply_delta(
        [
            {"op": "replace", "path": "/count", "value": 1},
            {"op": "add", "path": "/newField", "value": "added"},
            {"op": "replace", "path": "/count", "value": 2},
        ]
    )

    assert store.get_state().custom_state == {"count": 2, "newField": "added"}


def test_remove_under_missing_parent_is_skipped() -> None:
    store = StateStore()
    store.set_snapshot({"a": 1})

    store.apply_delta([{"op": "remove", "path": "/nonexistent/deep/path"}])

    assert store.get_state().custom_state == {"a": 1}


def test_missing_parent_skips_only_that_operation() -> None:
    result = apply_json_patch(
        {"a": 1},
        [
            {"op": "add", "path": "/missing/child", "value": 1},
            {"op": "add", "path": "/b", "value": 2},
        ],
    )

    assert result == {"a": 1, "b": 2}


def test_copy_does_not_alias_source() -> None:
    store = StateStore()
    store.set_snapshot({"source": {"nested": {"value": 1}}})
    store.apply_delta([{"op": "copy", "from": "/source", "path": "/copied"}])

    store.apply_delta([{"op": "replace", "path": "/source/nested/value", "value": 999}])

    state = store.get_state().custom_state
    assert state["source"]["nested"]["value"] == 999
    assert state["copied"]["nested"]["value"] == 1


def test_earlier_states_are_never_mutated() -> None:
    store = StateStore()
    store.set_snapshot({"user": {"name": "a"}, "items": [1]})
    before = store.get_state()

    store.apply_delta(
        [
            {"op": "replace", "path": "/user/name", "value": "b"},
            {"op": "add", "path": "/items/-", "value": 2},
        ]
    )

    assert before.custom_state == {"user": {"name": "a"}, "items": [1]}
    assert store.get_state().custom_state == {"user": {"name": "b"}, "items": [1, 2]}


def test_list_operations() -> None:
    document = {"items": ["a", "c"]}

    result = apply_json_patch(
        document,
        [
            {"op": "add", "path": "/items/1", "value": "b"},
            {"op": "add", "path": "/items/-", "value": "d"},
            {"op": "replace", "path": "/items/0", "value": "A"},
            {"op": "remove", "path": "/items/9"},
            {"op": "replace", "path": "/items/9", "value": "x"},
        ],
    )

    assert result == {"items": ["A", "b", "c", "d"]}
    assert document == {"items": ["a", "c"]}


def test_move_relocates_value() -> None:
    result = apply_json_patch(
        {"draft": {"title": "t"}, "published": {}},
        [{"op": "move", "from": "/draft/title", "path": "/published/title"}],
    )

    assert result == {"draft": {}, "published": {"title": "t"}}


def test_root_replace_merges_top_level_keys() -> None:
    result = apply_json_patch({"a": 1, "b": 2}, [{"op": "replace", "path": "", "value": {"b": 3, "c": 4}}])

    assert result == {"a": 1, "b": 3, "c": 4}


def test_failed_test_operation_is_ignored_by_default() -> None:
    store = StateStore()
    store.set_snapshot({"version": 1})

    store.apply_delta(
        [
            {"op": "test", "path": "/version", "value": 2},
            {"op": "replace", "path": "/version", "value": 3},
        ]
    )

    assert store.custom_state == {"version": 3}


def test_strict_test_discards_whole_batch() -> None:
    store = StateStore(strict_test=True)
    store.set_snapshot({"version": 1})
    notified: list[SessionState] = []
    store.subscribe(notified.append)

    store.apply_delta(
        [
            {"op": "replace", "path": "/version", "value": 3},
            {"op": "test", "path": "/version", "value": 1},
        ]
    )
    assert store.custom_state == {"version": 1}
    assert notified == []

    store.apply_delta(
        [
            {"op": "test", "path": "/version", "value": 1},
            {"op": "replace", "path": "/version", "value": 2},
        ]
    )
    assert store.custom_state == {"version": 2}


def test_subscribers_are_notified_once_per_batch() -> None:
    store = StateStore()
    notified: list[SessionState] = []
    unsubscribe = store.subscribe(notified.append)

    store.set_snapshot({"n": 0})
    store.apply_delta(
        [
            {"op": "replace", "path": "/n", "value": 1},
            {"op": "replace", "path": "/n", "value": 2},
        ]
    )
    unsubscribe()
    store.set_snapshot({"n": 3})

    assert [s.custom_state for s in notified] == [{"n": 0}, {"n": 2}]


def test_snapshot_rejects_non_mapping() -> None:
    with pytest.raises(TypeError):
        StateStore().set_snapshot(["not", "a", "mapping"])  # type: ignore[arg-type]


def test_bind_state_store_tracks_run_lifecycle() -> None:
    router = EventRouter()
    store = StateStore()
    unsubscribe = bind_state_store(router, store)

    router.route(RunStartedEvent(type=EventType.RUN_STARTED, run_id="r1"))
    assert store.get_state().status == "running"

    router.route(StateSnapshotEvent(type=EventType.STATE_SNAPSHOT, snapshot={"step": 1}))
    router.route(
        StateDeltaEvent(
            type=EventType.STATE_DELTA,
            delta=[{"op": "replace", "path": "/step", "value": 2}],
        )
    )
    assert store.custom_state == {"step": 2}

    router.route(RunFinishedEvent(type=EventType.RUN_FINISHED))
    assert store.get_state().status == "completed"

    router.route(RunErrorEvent(type=EventType.RUN_ERROR, message="boom"))
    assert store.get_state().status == "error"

    unsubscribe()
    assert router.handler_count() == 0


def test_pointer_helpers() -> None:
    assert parse_pointer("") == []
    assert parse_pointer("/a~1b/c~0d") == ["a/b", "c~d"]
    assert get_pointer({"a": [{"b": 1}]}, "/a/0/b") == 1
    with pytest.raises(PatchApplyError):
        parse_pointer("no-slash")


def test_validate_json_patch() -> None:
    assert validate_json_patch([{"op": "add", "path": "/a", "value": 1}])
    assert not validate_json_patch({"op": "add", "path": "/a"})
    assert not validate_json_patch([{"op": "frobnicate", "path": "/a"}])
    assert not validate_json_patch([{"op": "move", "path": "/a"}])


def test_operation_round_trips_wire_keys() -> None:
    op = JsonPatchOperation.from_dict({"op": "copy", "from": "/a", "path": "/b"})

    assert op.from_ == "/a"
    assert op.to_dict() == {"op": "copy", "path": "/b", "from": "/a"}


def test_failed_move_leaves_document_unchanged() -> None:
    document = {"a": [{"x": 1}, {"y": 2}]}

    # Once /a/0 is removed, /a/1 no longer exists
    result = apply_json_patch(document, [{"op": "move", "from": "/a/0", "path": "/a/1/k"}])

    assert result == {"a": [{"x": 1}, {"y": 2}]}

    store = StateStore()
    store.set_snapshot(document)
    store.apply_delta(
        [
            {"op": "move", "from": "/a/0", "path": "/a/1/k"},
            {"op": "add", "path": "/b", "value": True},
        ]
    )
    assert store.custom_state == {"a": [{"x": 1}, {"y": 2}], "b": True}


def test_snapshot_is_copied_from_caller() -> None:
    snapshot = {"count": 1, "nested": {"items": ["a"]}}
    store = StateStore()
    store.set_snapshot(snapshot)

    snapshot["count"] = 2
    snapshot["nested"]["items"].append("b")

    assert store.custom_state == {"count": 1, "nested": {"items": ["a"]}}
