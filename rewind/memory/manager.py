"""Size accounting, budget trimming and garbage collection for history lists.

Sizes are estimates: serialized args, label and path lengths counted as
UTF-16 (two bytes per character) plus a fixed closure overhead.  The
numbers steer eviction; they are not a measurement of the heap.

None of the functions here mutate the lists they are given.  Optimizing an
action produces a copy whose ``do``/``undo`` closures are the originals, so
replay behaviour never changes, only the accounted footprint.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from rewind.diff.clone import compute_hash, selective_deep_clone
from rewind.models.history import Action, ActionMetadata, LargestAction, MemoryUsage
from rewind.observability.metrics import evicted_actions_total

_log = structlog.get_logger(component="memory.manager")

T = TypeVar("T")

CLOSURE_OVERHEAD_BYTES = 500
UNSERIALIZABLE_ARG_BYTES = 1000

_LONG_HISTORY = 50
_RECENT_WINDOW = 20
_AGGRESSIVE_ARGS_KEPT = 2
_FALLBACK_MIN_FREED = 100 * 1024
_FALLBACK_HISTORY = 100
_FALLBACK_EVICT_RATIO = 0.1


@dataclass
class GCResult:
    """Lists produced by a garbage collection pass."""

    past: list[Action[Any]] = field(default_factory=list)
    future: list[Action[Any]] = field(default_factory=list)
    freed_bytes: int = 0
    evicted: int = 0


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------


def estimate_size(action: Action[Any]) -> int:
    """Estimate *action*'s footprint in bytes and cache it on the action."""
    if action.estimated_size is not None:
        return action.estimated_size

    size = 0
    if action.args:
        try:
            size += len(json.dumps(action.args)) * 2
        except (TypeError, ValueError):
            size += UNSERIALIZABLE_ARG_BYTES * len(action.args)
    if action.label:
        size += len(action.label) * 2
    size += sum(len(path) * 2 for path in action.target_paths)
    size += CLOSURE_OVERHEAD_BYTES

    action.estimated_size = size
    return size


def estimate_total(past: Sequence[Action[Any]], future: Sequence[Action[Any]]) -> MemoryUsage:
    """Sum the estimated sizes of both lists and find the largest entry."""
    past_sizes = [estimate_size(action) for action in past]
    future_sizes = [estimate_size(action) for action in future]
    total = sum(past_sizes) + sum(future_sizes)
    count = len(past_sizes) + len(future_sizes)

    largest: LargestAction | None = None
    for action, size in zip([*past, *future], [*past_sizes, *future_sizes], strict=True):
        if size > 0 and (largest is None or size > largest.size):
            largest = LargestAction(size=size, label=action.label)

    return MemoryUsage(
        past_size=len(past_sizes),
        future_size=len(future_sizes),
        estimated_bytes=total,
        action_count=count,
        average_action_size=total / count if count else 0.0,
        largest_action=largest,
    )


# ---------------------------------------------------------------------------
# Trimming
# ---------------------------------------------------------------------------


def trim_by_memory(past: Sequence[Action[T]], budget_bytes: int) -> list[Action[T]]:
    """Drop the oldest entries until *past* fits *budget_bytes*.

    Never empties the list: the newest entry is always kept.
    """
    sizes = [estimate_size(action) for action in past]
    total = sum(sizes)
    start = 0
    while total > budget_bytes and len(past) - start > 1:
        total -= sizes[start]
        start += 1

    if start:
        evicted_actions_total.labels(reason="memory").inc(start)
        _log.info("history_trimmed_by_memory", evicted=start, remaining_bytes=total, budget_bytes=budget_bytes)
    return list(past[start:])


def trim_by_count(past: Sequence[Action[T]], max_history: int | None) -> list[Action[T]]:
    """Keep only the newest *max_history* entries."""
    if max_history is None or len(past) <= max_history:
        return list(past)
    evicted = len(past) - max_history
    evicted_actions_total.labels(reason="count").inc(evicted)
    _log.debug("history_trimmed_by_count", evicted=evicted, max_history=max_history)
    return list(past[evicted:])


# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------


def optimize_action(action: Action[T]) -> Action[T]:
    """Standard optimization: intern the label and hash mapping args.

    Already-compressed actions are returned unchanged.
    """
    if action.metadata is not None and action.metadata.compressed:
        return action

    args = [
        {"_optimized": True, "_type": "object", "_hash": compute_hash(arg)} if isinstance(arg, dict) else arg
        for arg in action.args
    ]
    args_changed = any(new is not old for new, old in zip(args, action.args, strict=True))
    previous = action.metadata or ActionMetadata()
    return dataclasses.replace(
        action,
        label=sys.intern(action.label) if action.label else action.label,
        args=args,
        metadata=ActionMetadata(compressed=True, hash=previous.hash),
        estimated_size=None if args_changed else action.estimated_size,
    )


def optimize_for_storage(action: Action[T], threshold_kb: float) -> Action[T]:
    """Replace the args of an oversized action with reference stubs.

    Actions below ``threshold_kb`` are returned as-is.  Above it, every
    container or object argument becomes ``{"_type": <name>, "_ref": True}``
    and a content hash of the original args is kept in ``metadata.hash``.
    """
    if estimate_size(action) < threshold_kb * 1024:
        return action

    stubs = [
        arg if arg is None or isinstance(arg, (str, int, float, bool)) else {"_type": type(arg).__name__, "_ref": True}
        for arg in action.args
    ]
    _log.debug("action_optimized_for_storage", label=action.label, size=action.estimated_size)
    return dataclasses.replace(
        action,
        args=stubs,
        metadata=ActionMetadata(compressed=True, hash=compute_hash(action.args)),
        estimated_size=None if action.args else action.estimated_size,
    )


def _optimize_aggressively(action: Action[T]) -> Action[T]:
    optimized = optimize_action(action)
    if len(optimized.args) > _AGGRESSIVE_ARGS_KEPT:
        if optimized is action:
            optimized = dataclasses.replace(action)
        optimized.args = optimized.args[:_AGGRESSIVE_ARGS_KEPT]
        optimized.estimated_size = None
    return optimized


# ---------------------------------------------------------------------------
# Garbage collection
# ---------------------------------------------------------------------------


def garbage_collect(
    past: Sequence[Action[T]],
    future: Sequence[Action[T]],
    *,
    memory_based_limit: bool = False,
    max_memory_bytes: int = 50 * 1024 * 1024,
    max_history: int | None = None,
) -> GCResult:
    """Optimize and trim history lists under a memory or count budget.

    Steps, in order:
      1. every future entry gets standard optimization;
      2. past is trimmed to the memory budget left after the future list
         (``memory_based_limit``) or to ``max_history`` entries;
      3. with more than 50 past entries, all but the newest 20 get
         aggressive optimization (args cut to two) and the newest 20 get
         standard optimization;
      4. if less than 100 KB was freed and past still holds more than 100
         entries, the oldest 10% are evicted as well.
    """
    before = estimate_total(past, future).estimated_bytes

    new_future = [optimize_action(action) for action in future]

    if memory_based_limit:
        future_bytes = sum(estimate_size(action) for action in new_future)
        new_past = trim_by_memory(
            [optimize_action(action) for action in past],
            max_memory_bytes - future_bytes,
        )
    else:
        new_past = trim_by_count(past, max_history)

    if len(new_past) > _LONG_HISTORY:
        long_term = new_past[:-_RECENT_WINDOW]
        recent = new_past[-_RECENT_WINDOW:]
        new_past = [_optimize_aggressively(action) for action in long_term] + [
            optimize_action(action) for action in recent
        ]

    freed = before - estimate_total(new_past, new_future).estimated_bytes
    if freed < _FALLBACK_MIN_FREED and len(new_past) > _FALLBACK_HISTORY:
        drop = int(len(new_past) * _FALLBACK_EVICT_RATIO)
        evicted_actions_total.labels(reason="gc_fallback").inc(drop)
        new_past = new_past[drop:]
        freed = before - estimate_total(new_past, new_future).estimated_bytes

    evicted = len(past) - len(new_past)
    return GCResult(past=new_past, future=new_future, freed_bytes=max(freed, 0), evicted=evicted)


def adjusted_gc_interval(history_length: int, base_interval: float) -> float:
    """Run GC more often under history pressure, less often when it is short."""
    if history_length > 200:
        return base_interval * 0.5
    if history_length > 100:
        return base_interval * 0.75
    if history_length < 20:
        return base_interval * 2
    return base_interval


# ---------------------------------------------------------------------------
# Selective clone cache
# ---------------------------------------------------------------------------


class SelectiveCloneCache:
    """Single-slot memo for selective clones of the current state.

    Returns the previous clone when asked again for the same state object
    (by identity) and the same path list.
    """

    def __init__(self) -> None:
        self._state: Any = None
        self._paths: tuple[str, ...] | None = None
        self._result: Any = None
        self._filled = False

    def clone(self, state: Any, paths: Sequence[str] | None) -> Any:
        key = tuple(paths) if paths else None
        if self._filled and state is self._state and key == self._paths:
            return self._result
        if key is None or not isinstance(state, dict):
            result = state
        else:
            result = selective_deep_clone(state, key)
        self._state, self._paths, self._result, self._filled = state, key, result, True
        return result

    def reset(self) -> None:
        self._state = self._result = None
        self._paths = None
        self._filled = False
