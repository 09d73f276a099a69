"""History stack -- owns the past/future lists and coordinates everything else.

Flow of a push:
    caller -> action factory -> do() -> plugins (action_push) -> compression
    or append -> budget enforcement -> plugins (state_change) -> caller

Every state handed back to the caller (push, undo, redo, batch, rebuild) is
a deep clone of what the action produced, so callers can mutate results
freely without reaching into history.

The stack is single-threaded.  ``ExecutionPhase.BUSY`` only guards against
undo/redo issued from inside a running action; it is not a lock.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

import structlog

from rewind.actions.factory import compose_batch
from rewind.actions.factory import create_action as _create_action
from rewind.actions.factory import create_diff_action as _create_diff_action
from rewind.config import load_config
from rewind.diff.clone import deep_clone
from rewind.memory.manager import (
    SelectiveCloneCache,
    adjusted_gc_interval,
    estimate_size,
    estimate_total,
    garbage_collect,
    optimize_for_storage,
    trim_by_count,
    trim_by_memory,
)
from rewind.models.config import HistoryOptions, RewindConfig
from rewind.models.history import (
    Action,
    ExecutionPhase,
    HistoryEntry,
    HistoryState,
    MemoryUsage,
    OperationRecord,
    OperationType,
)
from rewind.observability.logging import setup_logging
from rewind.observability.metrics import (
    gc_freed_bytes_total,
    gc_runs_total,
    operation_duration_seconds,
    operations_total,
)
from rewind.observability.performance import PerformanceMonitor
from rewind.plugins.base import (
    ActionPushEvent,
    ClearEvent,
    GCEvent,
    InitEvent,
    MemoryWarningEvent,
    PluginEventName,
    RedoEvent,
    StateChangeEvent,
    UndoEvent,
)
from rewind.plugins.persistence import PersistencePlugin
from rewind.plugins.pipeline import PluginPipeline
from rewind.plugins.storage import KeyValueStore, MemoryStore, SQLiteStore

_log = structlog.get_logger(component="history.stack")

T = TypeVar("T")

GC_TIMER = "undoStackGC"
EMERGENCY_GC_TIMER = "undoStackGC:emergency"
_EMERGENCY_GC_DELAY_MS = 10_000
_DEFAULT_MEMORY_THRESHOLD_MB = 50


class ActionExecutionError(Exception):
    """Raised when an action's do() or undo() fails inside a stack operation."""

    def __init__(self, label: str | None, step: str, cause: Exception) -> None:
        super().__init__(f"Action '{label or 'unnamed'}' failed during {step}(): {cause}")
        self.label = label
        self.step = step
        self.cause = cause


@dataclass
class _OperationScope:
    label: str | None = None
    size: int | None = None


class HistoryStack(Generic[T]):
    """Undo/redo history over caller-owned state.

    Args:
        options: Behaviour switches and budgets; defaults apply when omitted.
        monitor: Timer and scheduler.  A private one is created, enabled
                 only when ``options.performance_monitoring`` is set.

    Raises:
        DependencyCycleError: the configured plugins depend on each other
            in a cycle.
    """

    def __init__(self, options: HistoryOptions | None = None, *, monitor: PerformanceMonitor | None = None) -> None:
        self._options = options or HistoryOptions()
        self._monitor = monitor or PerformanceMonitor(enabled=self._options.performance_monitoring)
        self._pipeline = PluginPipeline(self._options.plugins)

        self._past: list[Action[T]] = []
        self._future: list[Action[T]] = []
        self._phase = ExecutionPhase.IDLE
        self._last_state: T | None = None
        self._last_operation: OperationRecord | None = None
        self._clone_cache = SelectiveCloneCache()

        _log.debug(
            "history_stack_created",
            plugins=[plugin.name for plugin in self._pipeline.plugins],
            compress=self._options.compress,
            memory_based_limit=self._options.memory_based_limit,
        )
        self._pipeline.emit(InitEvent(stack=self))
        self._schedule_gc()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def options(self) -> HistoryOptions:
        return self._options

    @property
    def phase(self) -> ExecutionPhase:
        return self._phase

    @property
    def can_undo(self) -> bool:
        return bool(self._past) and self._phase is ExecutionPhase.IDLE

    @property
    def can_redo(self) -> bool:
        return bool(self._future) and self._phase is ExecutionPhase.IDLE

    @property
    def history(self) -> list[HistoryEntry]:
        """One row per past entry, oldest first; unlabeled rows read ``action <n>``."""
        return [
            HistoryEntry(index=index, label=action.label or f"action {index + 1}")
            for index, action in enumerate(self._past)
        ]

    @property
    def state(self) -> HistoryState:
        return HistoryState(
            past_count=len(self._past),
            future_count=len(self._future),
            can_undo=self.can_undo,
            can_redo=self.can_redo,
            last_operation=self._last_operation,
        )

    def memory_usage(self) -> MemoryUsage:
        usage = estimate_total(self._past, self._future)
        return dataclasses.replace(usage, last_operation=self._last_operation)

    def raw_history(self) -> tuple[list[Action[T]], list[Action[T]]]:
        """Copies of the past and future lists (the actions themselves are shared)."""
        return list(self._past), list(self._future)

    def current_state(self) -> T | None:
        """The state produced by the latest operation, or None before the first one.

        With ``selective_paths`` and a mapping state only those paths are
        cloned, and asking again for an unchanged state returns the same
        clone.  That clone is shared by every caller; treat it as read-only.
        """
        if self._last_state is None:
            return None
        if not self._options.selective_paths or not isinstance(self._last_state, dict):
            return deep_clone(self._last_state)
        return self._clone_cache.clone(self._last_state, self._options.selective_paths)

    # ------------------------------------------------------------------
    # Action builders bound to this stack's options
    # ------------------------------------------------------------------

    def create_action(
        self,
        do_fn: Callable[..., T],
        undo_fn: Callable[..., T],
        *args: Any,
        label: str | None = None,
    ) -> Action[T]:
        return _create_action(do_fn, undo_fn, *args, label=label)

    def create_diff_action(self, prev: T, next_: T, label: str | None = None) -> Action[T]:
        return _create_diff_action(
            prev,
            next_,
            label,
            memory_efficient=self._options.memory_efficient,
            debug=self._options.debug,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(self, fn: Callable[[], T], step: str, label: str | None) -> T:
        previous = self._phase
        self._phase = ExecutionPhase.BUSY
        try:
            return fn()
        except Exception as exc:
            _log.error("history_action_failed", label=label, step=step, error=str(exc))
            raise ActionExecutionError(label, step, exc) from exc
        finally:
            self._phase = previous

    @contextmanager
    def _track(
        self,
        kind: OperationType,
        operation: str,
        label: str | None = None,
        size: int | None = None,
        *,
        schedule: bool = True,
    ) -> Iterator[_OperationScope]:
        """Record a successful operation as the stack's last operation."""
        scope = _OperationScope(label=label, size=size)
        start = time.perf_counter()
        yield scope
        elapsed = time.perf_counter() - start

        self._last_operation = OperationRecord(
            type=kind,
            timestamp=datetime.now(tz=UTC),
            duration=elapsed * 1000.0,
            memory_usage=self._monitor.get_memory_usage(),
            label=scope.label,
            action_size=scope.size,
        )
        operations_total.labels(operation=operation).inc()
        operation_duration_seconds.labels(operation=operation).observe(elapsed)
        _log.debug(f"history_{operation}", label=scope.label, duration_ms=round(elapsed * 1000.0, 3))
        if schedule:
            self._schedule_gc()

    def _schedule_gc(self) -> None:
        if not self._options.performance_monitoring:
            return
        interval = adjusted_gc_interval(len(self._past), self._options.gc_interval)
        self._monitor.schedule_gc(GC_TIMER, self.collect_garbage, interval)

        threshold_mb = self._options.memory_threshold or _DEFAULT_MEMORY_THRESHOLD_MB
        usage = estimate_total(self._past, self._future)
        if usage.estimated_bytes > threshold_mb * 1024 * 1024:
            _log.warning(
                "history_memory_threshold_exceeded",
                estimated_bytes=usage.estimated_bytes,
                threshold_mb=threshold_mb,
            )
            self._monitor.schedule_gc(EMERGENCY_GC_TIMER, self.collect_garbage, _EMERGENCY_GC_DELAY_MS)

    def _emit_state(self, state: T) -> None:
        if self._pipeline.listens(PluginEventName.STATE_CHANGE):
            self._pipeline.emit(StateChangeEvent(state=deep_clone(state)))

    def _try_compress(self, action: Action[T]) -> bool:
        """Replace the newest past entry when it carries the same label."""
        if not self._options.compress or not action.label or not self._past:
            return False
        if self._past[-1].label != action.label:
            return False
        self._past[-1] = action
        _log.debug("history_action_compressed", label=action.label)
        return True

    def _enforce_limits(self) -> None:
        opts = self._options
        if not opts.memory_based_limit:
            self._past = trim_by_count(self._past, opts.max_history)
            return

        usage = estimate_total(self._past, self._future)
        if usage.estimated_bytes <= opts.max_memory_bytes:
            return

        future_bytes = sum(estimate_size(action) for action in self._future)
        _log.warning(
            "history_memory_budget_exceeded",
            estimated_bytes=usage.estimated_bytes,
            budget_bytes=opts.max_memory_bytes,
        )
        self._past = trim_by_memory(self._past, opts.max_memory_bytes - future_bytes)
        self._pipeline.emit(MemoryWarningEvent(usage=usage, stack=self))

    def _push(self, action: Action[T]) -> T:
        threshold_kb = self._options.large_action_threshold
        if estimate_size(action) > threshold_kb * 1024:
            action = optimize_for_storage(action, threshold_kb)
        if action.is_diff:
            _log.debug("history_diff_action", label=action.label, path_count=len(action.target_paths))

        result = self._execute(action.do, "do", action.label)
        self._last_state = result
        self._pipeline.emit(ActionPushEvent(action=action, stack=self))

        self._future = []
        if not self._try_compress(action):
            self._past.append(action)
        self._enforce_limits()

        self._emit_state(result)
        return deep_clone(result)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def push(self, do_fn: Callable[..., T], undo_fn: Callable[..., T], *args: Any, label: str | None = None) -> T:
        """Build an action from *do_fn*/*undo_fn* and *args*, run it and record it.

        Raises:
            ActionExecutionError: do_fn raised; nothing is recorded.
        """
        action = _create_action(do_fn, undo_fn, *args, label=label)
        with self._track(OperationType.PUSH, "push", label, action.estimated_size):
            return self._push(action)

    def push_action(self, action: Action[T]) -> T:
        """Run *action* and record it; oversized actions are optimized first.

        Raises:
            ActionExecutionError: action.do() raised; nothing is recorded.
        """
        with self._track(OperationType.PUSH, "push_action", action.label, estimate_size(action)):
            return self._push(action)

    def undo(self) -> T | None:
        """Revert the newest past entry; None if there is none or the stack is busy.

        Raises:
            ActionExecutionError: the action's undo() raised; the entry stays
                in past.
        """
        if not self.can_undo:
            _log.debug("history_undo_skipped", past=len(self._past), phase=self._phase)
            return None

        with self._track(OperationType.UNDO, "undo") as scope:
            action = self._past.pop()
            scope.label, scope.size = action.label, estimate_size(action)
            self._pipeline.emit(UndoEvent(action=action, stack=self))
            try:
                result = self._execute(action.undo, "undo", action.label)
            except ActionExecutionError:
                self._past.append(action)
                raise
            self._future.insert(0, action)
            self._last_state = result
            self._emit_state(result)
            return deep_clone(result)

    def redo(self) -> T | None:
        """Re-apply the oldest future entry; None if there is none or the stack is busy.

        Raises:
            ActionExecutionError: the action's do() raised; the entry stays
                in future.
        """
        if not self.can_redo:
            _log.debug("history_redo_skipped", future=len(self._future), phase=self._phase)
            return None

        with self._track(OperationType.REDO, "redo") as scope:
            action = self._future.pop(0)
            scope.label, scope.size = action.label, estimate_size(action)
            self._pipeline.emit(RedoEvent(action=action, stack=self))
            try:
                result = self._execute(action.do, "do", action.label)
            except ActionExecutionError:
                self._future.insert(0, action)
                raise
            self._past.append(action)
            self._enforce_limits()
            self._last_state = result
            self._emit_state(result)
            return deep_clone(result)

    def batch(self, actions: Iterable[Action[T]], label: str | None = None) -> T | None:
        """Run *actions* as one history entry; returns None for an empty batch.

        If a child fails, the children already applied are reverted and
        nothing is recorded.
        """
        children = list(actions)
        if not children:
            return None
        composite = compose_batch(children, label)
        with self._track(OperationType.PUSH, "batch", label, composite.estimated_size):
            _log.debug("history_batch", label=label, children=len(children))
            return self._push(composite)

    def undo_until(self, label: str) -> T | None:
        """Undo until the entry labelled *label* has been undone (inclusive).

        Stops early when past runs out.  Returns the last undo result.
        """
        if not self.can_undo:
            return None
        with self._track(OperationType.UNDO, "undo_until", f"undo_until({label})"):
            result: T | None = None
            found = False
            while self.can_undo and not found:
                target = self._past[-1]
                result = self.undo()
                found = target.label == label
            return result

    def undo_to(self, index: int) -> T | None:
        """Keep past entries ``[0..index]`` and undo everything after them.

        Returns None for an index outside past, or when nothing was undone.
        """
        if index < 0 or index >= len(self._past):
            return None
        with self._track(OperationType.UNDO, "undo_to", f"undo_to({index})"):
            result: T | None = None
            for _ in range(len(self._past) - index - 1):
                result = self.undo()
            return result

    def rebuild(self, initial_state: T, set_state_fn: Callable[[T], Any]) -> T:
        """Replay past from *initial_state*, keeping future as it was.

        Actions whose do() fails during the replay are logged and dropped
        from past; the rest are replayed in order.
        """
        with self._track(OperationType.PUSH, "rebuild", "rebuild"):
            saved_past = list(self._past)
            saved_future = list(self._future)
            self._reset(sever_args=False)

            set_state_fn(initial_state)
            self._last_state = initial_state
            final_state = initial_state
            for action in saved_past:
                try:
                    final_state = self._execute(action.do, "do", action.label)
                except ActionExecutionError as exc:
                    _log.error("history_rebuild_replay_failed", label=action.label, error=str(exc.cause))
                    continue
                self._past.append(action)

            self._future = saved_future
            self._last_state = final_state
            _log.info(
                "history_rebuilt",
                past=len(self._past),
                future=len(self._future),
                skipped=len(saved_past) - len(self._past),
            )
            self._emit_state(final_state)
            return deep_clone(final_state)

    def _reset(self, *, sever_args: bool) -> None:
        if not self._past and not self._future:
            return
        if sever_args:
            for action in (*self._past, *self._future):
                action.args = []
        self._pipeline.emit(ClearEvent(stack=self))
        self._past = []
        self._future = []

    def clear(self) -> None:
        """Drop all history.  Safe to call repeatedly."""
        with self._track(OperationType.CLEAR, "clear", schedule=False):
            self._reset(sever_args=True)
            self._monitor.cancel_gc(GC_TIMER)
            self._monitor.cancel_gc(EMERGENCY_GC_TIMER)
            self.collect_garbage()

    def collect_garbage(self) -> int:
        """Run one garbage collection pass now; returns the estimated bytes freed."""
        if not self._past and not self._future:
            return 0

        start = time.perf_counter()
        opts = self._options
        result = garbage_collect(
            self._past,
            self._future,
            memory_based_limit=opts.memory_based_limit,
            max_memory_bytes=opts.max_memory_bytes,
            max_history=opts.max_history,
        )
        self._past = result.past
        self._future = result.future
        gc_runs_total.inc()
        gc_freed_bytes_total.inc(result.freed_bytes)

        if opts.debug:
            usage = estimate_total(self._past, self._future)
            _log.info(
                "history_gc_completed",
                freed_bytes=result.freed_bytes,
                evicted=result.evicted,
                estimated_bytes=usage.estimated_bytes,
                largest_action=usage.largest_action,
            )
        else:
            _log.debug("history_gc_completed", freed_bytes=result.freed_bytes, evicted=result.evicted)

        self._pipeline.emit(GCEvent(stack=self, freed_bytes=result.freed_bytes))
        self._last_operation = OperationRecord(
            type=OperationType.CLEAR,
            timestamp=datetime.now(tz=UTC),
            duration=(time.perf_counter() - start) * 1000.0,
            memory_usage=self._monitor.get_memory_usage(),
            label=f"GC ({result.freed_bytes / 1024:.2f}KB freed)",
        )
        return result.freed_bytes

    def close(self) -> None:
        """Cancel every pending timer owned by this stack and close its plugins."""
        self._monitor.cancel_all()
        self._pipeline.close()


def create_history_stack(options: HistoryOptions | None = None, **overrides: Any) -> HistoryStack[Any]:
    """Build an independent HistoryStack.

    Keyword *overrides* replace the matching HistoryOptions fields::

        stack = create_history_stack(compress=True, max_history=50)
    """
    opts = options or HistoryOptions()
    if overrides:
        opts = dataclasses.replace(opts, **overrides)
    return HistoryStack(opts)


def create_history_stack_from_config(config: RewindConfig | None = None) -> HistoryStack[Any]:
    """Build a stack from REWIND_* settings (see ``rewind.config.load_config``).

    Applies the configured log level.  With persistence enabled, a
    PersistencePlugin is attached, backed by SQLite when a path is
    configured and by an in-process store otherwise.
    """
    config = config or load_config()
    setup_logging(config.log.level)
    options = config.history.to_options()
    persistence = config.persistence
    if persistence.enabled:
        store: KeyValueStore = SQLiteStore(persistence.sqlite_path) if persistence.sqlite_path else MemoryStore()
        options.plugins.append(
            PersistencePlugin(
                persistence.key,
                store,
                throttle_ms=persistence.throttle_ms,
                backup_threshold_mb=persistence.backup_threshold_mb,
            )
        )
    return HistoryStack(options)
