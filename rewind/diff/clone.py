"""Clone and hash helpers for plain state values (dicts, lists, scalars)."""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Iterable
from typing import Any, TypeVar

T = TypeVar("T")

_HASH_LENGTH = 16


def deep_clone(value: T) -> T:
    """Return a structurally equal copy sharing no mutable containers."""
    return copy.deepcopy(value)


def selective_deep_clone(state: dict[str, Any], paths: Iterable[str]) -> dict[str, Any]:
    """Clone only the values reachable through the dot-separated *paths*.

    Intermediate mappings are rebuilt as plain dicts holding just the
    requested branches.  Paths that do not resolve are skipped.

        >>> selective_deep_clone({"user": {"name": "a", "age": 3}, "x": 1}, ["user.name"])
        {'user': {'name': 'a'}}
    """
    result: dict[str, Any] = {}
    for path in paths:
        parts = path.split(".")
        current: Any = state
        target = result
        resolved = True
        for part in parts[:-1]:
            if not isinstance(current, dict) or part not in current:
                resolved = False
                break
            current = current[part]
            branch = target.get(part)
            if not isinstance(branch, dict):
                branch = {}
                target[part] = branch
            target = branch
        last = parts[-1]
        if resolved and isinstance(current, dict) and last in current:
            target[last] = deep_clone(current[last])
    return result


def compute_hash(value: Any) -> str:
    """Short content hash over the canonical JSON form of *value*.

    Values JSON cannot encode are hashed through their ``repr``.
    """
    try:
        payload = json.dumps(value, sort_keys=True, separators=(",", ":"), default=repr)
    except (TypeError, ValueError):
        payload = repr(value)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:_HASH_LENGTH]
