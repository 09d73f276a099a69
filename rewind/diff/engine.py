"""Path-level diffing between two state snapshots.

A patch maps dot-joined paths to the value found at that path on the
target side.  ``""`` is the root path; sequence indices are decimal
segments; ``REMOVED`` marks a mapping key that disappears or a trailing
sequence element that is dropped.

State must be acyclic and built from dicts, lists, tuples and leaf values.
Anything else is compared as a leaf with ``==``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from rewind.diff.clone import deep_clone

Patch = dict[str, Any]

_ROOT = ""


class _Removed:
    """Sentinel type for REMOVED; copies and pickles as the same object."""

    _instance: _Removed | None = None

    def __new__(cls) -> _Removed:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "REMOVED"

    def __copy__(self) -> _Removed:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Removed:
        return self

    def __reduce__(self) -> str:
        return "REMOVED"


REMOVED = _Removed()


class DiffError(Exception):
    """Base class for states the diff engine cannot describe as a patch."""


class DiffTypeMismatch(DiffError):
    """A path segment or patch entry does not fit the value found there."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"Type mismatch at {path or '<root>'!r}: {detail}")
        self.path = path
        self.detail = detail


class CyclicStateError(DiffError):
    """A container was reached again while it was still being walked."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Cyclic reference detected at {path or '<root>'!r}")
        self.path = path


@dataclass(frozen=True)
class DiffResult:
    """Changed paths plus the patches that move between the two snapshots."""

    paths: list[str] = field(default_factory=list)
    forward_patch: Patch = field(default_factory=dict)
    reverse_patch: Patch = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.paths


def analyze(prev: Any, next_: Any) -> DiffResult:
    """Compute the changed paths and the forward/reverse patches.

    Keys are visited in sorted order, so identical inputs always produce
    identical path lists.

    Raises:
        DiffTypeMismatch: a mapping key is not a usable path segment.
        CyclicStateError: either snapshot contains a reference cycle.
    """
    forward: Patch = {}
    reverse: Patch = {}
    _walk(prev, next_, (), forward, reverse, set())
    return DiffResult(paths=list(forward), forward_patch=forward, reverse_patch=reverse)


def apply(state: Any, patch: Patch) -> Any:
    """Return a new state with *patch* applied; *state* is left untouched.

    Only containers on a changed path are copied; every other branch is
    shared with *state*.  Values taken from the patch are deep-cloned.

    Raises:
        DiffTypeMismatch: a patch path does not exist in *state*.
    """
    if not patch:
        return state
    if _ROOT in patch:
        return _materialize(patch[_ROOT])
    changes = [(path.split("."), value) for path, value in patch.items()]
    return _apply_level(state, changes, ())


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def _join(path: tuple[str, ...]) -> str:
    return ".".join(path)


def _segment(key: Any, path: tuple[str, ...]) -> str:
    if not isinstance(key, str):
        raise DiffTypeMismatch(_join(path), f"mapping key {key!r} is not a string")
    if not key or "." in key:
        raise DiffTypeMismatch(_join(path), f"mapping key {key!r} cannot be a path segment")
    return key


def _record(
    path: tuple[str, ...],
    old: Any,
    new: Any,
    forward: Patch,
    reverse: Patch,
) -> None:
    joined = _join(path)
    forward[joined] = _materialize(new)
    reverse[joined] = _materialize(old)


def _walk(
    old: Any,
    new: Any,
    path: tuple[str, ...],
    forward: Patch,
    reverse: Patch,
    active: set[int],
) -> None:
    if old is new:
        return

    both_dicts = isinstance(old, dict) and isinstance(new, dict)
    same_sequence = isinstance(old, (list, tuple)) and type(old) is type(new)
    if not (both_dicts or same_sequence):
        if type(old) is not type(new) or old != new:
            _record(path, old, new, forward, reverse)
        return

    if id(old) in active or id(new) in active:
        raise CyclicStateError(_join(path))
    active.update((id(old), id(new)))
    try:
        if both_dicts:
            _walk_mapping(old, new, path, forward, reverse, active)
        else:
            _walk_sequence(old, new, path, forward, reverse, active)
    finally:
        active.difference_update((id(old), id(new)))


def _walk_mapping(
    old: dict[str, Any],
    new: dict[str, Any],
    path: tuple[str, ...],
    forward: Patch,
    reverse: Patch,
    active: set[int],
) -> None:
    keys = {_segment(key, path) for key in old} | {_segment(key, path) for key in new}
    for key in sorted(keys):
        child = (*path, key)
        if key not in old:
            _record(child, REMOVED, new[key], forward, reverse)
        elif key not in new:
            _record(child, old[key], REMOVED, forward, reverse)
        else:
            _walk(old[key], new[key], child, forward, reverse, active)


def _walk_sequence(
    old: list[Any] | tuple[Any, ...],
    new: list[Any] | tuple[Any, ...],
    path: tuple[str, ...],
    forward: Patch,
    reverse: Patch,
    active: set[int],
) -> None:
    common = min(len(old), len(new))
    for index in range(common):
        _walk(old[index], new[index], (*path, str(index)), forward, reverse, active)
    for index in range(common, len(new)):
        _record((*path, str(index)), REMOVED, new[index], forward, reverse)
    for index in range(common, len(old)):
        _record((*path, str(index)), old[index], REMOVED, forward, reverse)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def _materialize(value: Any) -> Any:
    return value if value is REMOVED else deep_clone(value)


def _index(segment: str, path: tuple[str, ...]) -> int:
    if not segment.isdigit():
        raise DiffTypeMismatch(_join(path), f"sequence index {segment!r} is not a number")
    return int(segment)


def _apply_level(
    node: Any,
    changes: list[tuple[list[str], Any]],
    path: tuple[str, ...],
) -> Any:
    leaves: dict[str, Any] = {}
    nested: dict[str, list[tuple[list[str], Any]]] = defaultdict(list)
    for segments, value in changes:
        head, rest = segments[0], segments[1:]
        if rest:
            nested[head].append((rest, value))
        else:
            leaves[head] = value

    if isinstance(node, dict):
        result = dict(node)
        for key, sub_changes in nested.items():
            if key not in result:
                raise DiffTypeMismatch(_join((*path, key)), "no container to descend into")
            result[key] = _apply_level(result[key], sub_changes, (*path, key))
        for key, value in leaves.items():
            if value is REMOVED:
                result.pop(key, None)
            else:
                result[key] = deep_clone(value)
        return result

    if isinstance(node, (list, tuple)):
        items = list(node)
        for segment, sub_changes in nested.items():
            index = _index(segment, path)
            if index >= len(items):
                raise DiffTypeMismatch(_join((*path, segment)), "no container to descend into")
            items[index] = _apply_level(items[index], sub_changes, (*path, segment))

        writes = sorted(
            ((_index(seg, path), value) for seg, value in leaves.items() if value is not REMOVED),
            key=lambda item: item[0],
        )
        removals = sorted((_index(seg, path) for seg, value in leaves.items() if value is REMOVED), reverse=True)
        for index, value in writes:
            if index < len(items):
                items[index] = deep_clone(value)
            elif index == len(items):
                items.append(deep_clone(value))
            else:
                raise DiffTypeMismatch(_join((*path, str(index))), "index past end of sequence")
        for index in removals:
            if index < len(items):
                del items[index]
        return tuple(items) if isinstance(node, tuple) else items

    raise DiffTypeMismatch(_join(path), f"cannot apply nested changes to {type(node).__name__}")
