"""Builders for reversible actions.

create_action      -- from explicit do/undo callables plus captured args.
create_diff_action -- from two state snapshots, via the diff engine.
compose_batch      -- one composite action over several children.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog

from rewind.diff.clone import deep_clone
from rewind.diff.engine import DiffError, analyze, apply
from rewind.memory.manager import estimate_size
from rewind.models.history import Action, ActionMetadata

_log = structlog.get_logger(component="actions.factory")

T = TypeVar("T")


def create_action(
    do_fn: Callable[..., T],
    undo_fn: Callable[..., T],
    *args: Any,
    label: str | None = None,
) -> Action[T]:
    """Capture deep clones of *args* and bind them to *do_fn*/*undo_fn*.

    Mutating the originals after this call does not change what the action
    replays.
    """
    cloned = [deep_clone(arg) for arg in args]
    action: Action[T] = Action(
        do_fn=lambda: do_fn(*cloned),
        undo_fn=lambda: undo_fn(*cloned),
        label=label,
        args=list(cloned),
        metadata=ActionMetadata(),
    )
    estimate_size(action)
    return action


def _whole_state_action(prev: T, next_: T, label: str) -> Action[T]:
    return create_action(
        lambda _prev, after: after,
        lambda before, _next: before,
        prev,
        next_,
        label=label,
    )


def create_diff_action(
    prev: T,
    next_: T,
    label: str | None = None,
    *,
    memory_efficient: bool = True,
    debug: bool = False,
) -> Action[T]:
    """Build an action that moves between two snapshots.

    * no changed paths        -> whole-state no-op tagged ``(no changes)``
    * snapshots not diffable  -> whole-state action tagged ``(full state)``
    * otherwise               -> mutation action carrying ``target_paths``
    """
    if not memory_efficient:
        return _whole_state_action(prev, next_, label or "state change")

    try:
        result = analyze(prev, next_)
    except DiffError as exc:
        _log.warning("diff_failed_using_full_state", label=label, error=str(exc))
        return _whole_state_action(prev, next_, f"{label or 'state change'} (full state)")

    if result.is_empty:
        return _whole_state_action(prev, next_, f"{label or 'noop'} (no changes)")

    # One private snapshot; the after side shares every unchanged branch with it.
    before = deep_clone(prev)
    forward, reverse = result.forward_patch, result.reverse_patch
    after = apply(before, forward)
    action: Action[T] = Action(
        do_fn=lambda: apply(before, forward),
        undo_fn=lambda: apply(after, reverse),
        label=f"{label or 'diff'} ({len(result.paths)} changes)",
        args=[before],
        is_mutation=True,
        target_paths=list(result.paths),
        metadata=ActionMetadata(),
    )
    _log.debug(
        "diff_action_created",
        label=action.label,
        path_count=len(result.paths),
        sample_paths=result.paths[:3],
        forward_patch=forward if debug else None,
    )
    estimate_size(action)
    return action


def _compensate(applied: Iterable[Action[Any]], step: str, label: str | None) -> None:
    for child in applied:
        try:
            if step == "undo":
                child.undo()
            else:
                child.do()
        except Exception as exc:
            _log.error("batch_compensation_failed", batch=label, child=child.label, step=step, error=str(exc))


def compose_batch(actions: Sequence[Action[T]], label: str | None = None) -> Action[T]:
    """Compose *actions* into one history step.

    ``do()`` replays children in order and ``undo()`` reverses them in
    strict reverse order; each returns the result of the last child it ran.
    The batch is transactional: if a child fails, the children already run
    in that pass are reverted before the exception propagates.
    """
    children = tuple(actions)

    def _do() -> T:
        applied: list[Action[T]] = []
        result: Any = None
        try:
            for child in children:
                result = child.do()
                applied.append(child)
        except Exception:
            _compensate(reversed(applied), "undo", label)
            raise
        return result

    def _undo() -> T:
        reverted: list[Action[T]] = []
        result: Any = None
        try:
            for child in reversed(children):
                result = child.undo()
                reverted.append(child)
        except Exception:
            _compensate(reversed(reverted), "do", label)
            raise
        return result

    return Action(
        do_fn=_do,
        undo_fn=_undo,
        label=label,
        metadata=ActionMetadata(timestamp=datetime.now(tz=UTC)),
        estimated_size=sum(estimate_size(child) for child in children),
        children=children,
    )
