"""
JSON Patch (RFC 6902) for STATE_DELTA handling.

The engine is lenient: an operation whose target cannot be resolved is
skipped and the rest of the batch still applies. Two behaviours differ from
the RFC on purpose and are relied upon by state producers:

* ``replace`` at the root path merges the top-level keys of a mapping value
  into the document instead of swapping the document.
* intermediate containers are never created; parents must already exist.

Writes are copy-on-write: every container on a written path is cloned once
per batch, so documents handed out earlier are never mutated.

@see https://datatracker.ietf.org/doc/html/rfc6902
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .errors import PatchApplyError, PatchTestFailed

LOGGER = logging.getLogger(__name__)

VALID_OPS = frozenset({"add", "remove", "replace", "move", "copy", "test"})


@dataclass(slots=True)
class JsonPatchOperation:
    """One RFC 6902 operation. ``from_`` maps to the wire key ``from``."""

    op: str
    path: str
    value: Any = None
    from_: str | None = None

    @classmethod
    def from_dict(cls, data: "Mapping[str, Any] | JsonPatchOperation") -> "JsonPatchOperation":
        if isinstance(data, JsonPatchOperation):
            return data
        if not isinstance(data, Mapping):
            raise PatchApplyError(f"Patch operation must be an object, got {type(data).__name__}", data)
        op = data.get("op")
        path = data.get("path")
        if op not in VALID_OPS:
            raise PatchApplyError(f"Unknown patch operation {op!r}", data)
        if not isinstance(path, str):
            raise PatchApplyError("Patch operation requires a string 'path'", data)
        from_ = data.get("from")
        if op in ("move", "copy") and not isinstance(from_, str):
            raise PatchApplyError(f"'{op}' operation requires a string 'from'", data)
        return cls(op=op, path=path, value=data.get("value"), from_=from_)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"op": self.op, "path": self.path}
        if self.op in ("add", "replace", "test"):
            data["value"] = self.value
        if self.from_ is not None:
            data["from"] = self.from_
        return data


def parse_pointer(pointer: str) -> list[str]:
    """
    Split a JSON Pointer into unescaped segments.

    '/foo/bar/0' => ['foo', 'bar', '0']; '' and '/' address the root.
    """
    if pointer in ("", "/"):
        return []
    if not pointer.startswith("/"):
        raise PatchApplyError(f"Invalid JSON Pointer: {pointer!r}")
    return [segment.replace("~1", "/").replace("~0", "~") for segment in pointer[1:].split("/")]


def _list_index(container: list[Any], segment: str, *, allow_end: bool) -> int:
    if segment == "-":
        if allow_end:
            return len(container)
        raise PatchApplyError("'-' only addresses the end of an array when adding")
    if not segment.isdigit() or (len(segment) > 1 and segment.startswith("0")):
        raise PatchApplyError(f"Invalid array index {segment!r}")
    index = int(segment)
    if index > len(container) or (index == len(container) and not allow_end):
        raise PatchApplyError(f"Array index {index} out of range")
    return index


def _child(container: Any, segment: str) -> Any:
    if isinstance(container, dict):
        if segment not in container:
            raise PatchApplyError(f"Path segment {segment!r} does not exist")
        return container[segment]
    if isinstance(container, list):
        return container[_list_index(container, segment, allow_end=False)]
    raise PatchApplyError(f"Cannot traverse into {type(container).__name__}")


def get_pointer(document: Any, pointer: str) -> Any:
    """Read the value at ``pointer``; raises PatchApplyError if it does not exist."""
    current = document
    for segment in parse_pointer(pointer):
        current = _child(current, segment)
    return current


def _json_equal(left: Any, right: Any) -> bool:
    return json.dumps(left, sort_keys=True, default=str) == json.dumps(right, sort_keys=True, default=str)


class _Workspace:
    """Copy-on-write view over a document for the duration of one batch."""

    def __init__(self, document: Mapping[str, Any]) -> None:
        self.root: dict[str, Any] = dict(document)
        # id -> object; holding the object keeps its id from being reused
        self._owned: dict[int, Any] = {id(self.root): self.root}

    def _own(self, value: Any) -> Any:
        self._owned[id(value)] = value
        return value

    def writable(self, segments: list[str]) -> Any:
        """Return the container at ``segments``, cloning it if still shared."""
        current: Any = self.root
        for segment in segments:
            child = _child(current, segment)
            if not isinstance(child, (dict, list)):
                raise PatchApplyError(f"Path segment {segment!r} is not a container")
            if id(child) not in self._owned:
                child = self._own(dict(child) if isinstance(child, dict) else list(child))
                if isinstance(current, dict):
                    current[segment] = child
                else:
                    current[int(segment)] = child
            current = child
        return current

    def apply(self, operation: JsonPatchOperation) -> None:
        segments = parse_pointer(operation.path)

        if not segments:
            if operation.op == "replace" and isinstance(operation.value, Mapping):
                self.root.update(operation.value)
                return
            raise PatchApplyError(f"Unsupported '{operation.op}' at the document root", operation)

        key = segments[-1]

        if operation.op == "add":
            _add(self.writable(segments[:-1]), key, operation.value)
        elif operation.op == "replace":
            _replace(self.writable(segments[:-1]), key, operation.value)
        elif operation.op == "remove":
            _remove(self.writable(segments[:-1]), key)
        elif operation.op == "move":
            from_segments = parse_pointer(operation.from_ or "")
            if not from_segments:
                raise PatchApplyError("Cannot move the document root", operation)
            if segments[: len(from_segments)] == from_segments and segments != from_segments:
                raise PatchApplyError("Cannot move a value into one of its children", operation)
            source = self.writable(from_segments[:-1])
            from_key = from_segments[-1]
            value = _child(source, from_key)
            _remove(source, from_key)
            try:
                _add(self.writable(segments[:-1]), key, value)
            except PatchApplyError:
                # Removing the source can shift array indexes on the target path
                _add(source, from_key, value)
                raise
        elif operation.op == "copy":
            value = copy.deepcopy(get_pointer(self.root, operation.from_ or ""))
            _add(self.writable(segments[:-1]), key, value)
        else:
            raise PatchApplyError(f"Unknown patch operation {operation.op!r}", operation)

    def test(self, operation: JsonPatchOperation) -> bool:
        try:
            actual = get_pointer(self.root, operation.path)
        except PatchApplyError:
            return False
        return _json_equal(actual, operation.value)


def _add(parent: Any, key: str, value: Any) -> None:
    if isinstance(parent, list):
        parent.insert(_list_index(parent, key, allow_end=True), value)
    else:
        parent[key] = value


def _replace(parent: Any, key: str, value: Any) -> None:
    if isinstance(parent, list):
        parent[_list_index(parent, key, allow_end=False)] = value
    else:
        parent[key] = value


def _remove(parent: Any, key: str) -> None:
    if isinstance(parent, list):
        try:
            index = _list_index(parent, key, allow_end=False)
        except PatchApplyError:
            return
        del parent[index]
    else:
        parent.pop(key, None)


def apply_operations(
    document: Mapping[str, Any],
    operations: Iterable[Mapping[str, Any] | JsonPatchOperation],
    *,
    strict_test: bool = False,
) -> tuple[dict[str, Any], int]:
    """
    Apply operations in order and return ``(new_document, applied_count)``.

    ``document`` is left untouched. Operations that cannot be applied are
    skipped. A failing ``test`` is ignored unless ``strict_test`` is set, in
    which case PatchTestFailed aborts the whole batch.
    """
    workspace = _Workspace(document)
    applied = 0

    for raw in operations:
        try:
            operation = JsonPatchOperation.from_dict(raw)
            if operation.op == "test":
                if not workspace.test(operation):
                    if strict_test:
                        raise PatchTestFailed(f"Test failed at path {operation.path!r}", operation)
                    LOGGER.debug(f"Ignoring failed test at path {operation.path!r}")
                continue
            workspace.apply(operation)
            applied += 1
        except PatchTestFailed:
            raise
        except PatchApplyError as e:
            LOGGER.debug(f"Skipping patch operation {raw!r}: {e}")

    return workspace.root, applied


def apply_json_patch(
    document: Mapping[str, Any],
    operations: Iterable[Mapping[str, Any] | JsonPatchOperation],
    *,
    strict_test: bool = False,
) -> dict[str, Any]:
    """
    Apply JSON Patch operations and return a new document.

    Example:
        state = {"count": 0, "items": []}
        apply_json_patch(state, [
            {"op": "replace", "path": "/count", "value": 1},
            {"op": "add", "path": "/items/-", "value": "item1"},
        ])
        # {"count": 1, "items": ["item1"]}
    """
    new_document, _ = apply_operations(document, operations, strict_test=strict_test)
    return new_document


def validate_json_patch(operations: Any) -> bool:
    """Return True if every element is a well-formed patch operation."""
    if not isinstance(operations, list):
        return False
    try:
        for operation in operations:
            JsonPatchOperation.from_dict(operation)
    except PatchApplyError:
        return False
    return True


__all__ = [
    "JsonPatchOperation",
    "VALID_OPS",
    "apply_json_patch",
    "apply_operations",
    "get_pointer",
    "parse_pointer",
    "validate_json_patch",
]
