"""Debug plugin -- aggregates operation counts, labels and memory samples."""

from __future__ import annotations

from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from rewind.memory.manager import estimate_size
from rewind.observability.performance import PerformanceMonitor
from rewind.plugins.base import HistoryPlugin, PluginEventName

if TYPE_CHECKING:
    from rewind.history.stack import HistoryStack
    from rewind.models.history import Action, MemoryUsage

_log = structlog.get_logger(component="plugins.debug")

_METRICS_TIMER = "debug:metrics"
_MEMORY_TIMER = "debug:memory"


@dataclass(frozen=True)
class DebugEvent:
    type: str
    label: str | None
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MemoryStats:
    total: int
    average: float
    peak: int
    samples: int


@dataclass(frozen=True)
class DebugMetrics:
    action_count: int
    undo_count: int
    redo_count: int
    avg_actions_per_batch: float
    most_frequent_action: str | None
    label_counts: dict[str, int]
    memory: MemoryStats | None = None


class DebugPlugin(HistoryPlugin):
    """Collects counters and periodic memory samples for diagnostics.

    Memory samples come from ``monitor.get_memory_usage()`` (tracemalloc),
    so they are only taken while tracemalloc is tracing.  Periodic sampling
    and metric reports need a running event loop.
    """

    name = "DebugPlugin"
    priority = -10

    def __init__(
        self,
        on_metrics: Callable[[DebugMetrics], None] | None = None,
        *,
        log_events: bool = True,
        max_events: int = 100,
        memory_check_interval: float = 10_000,
        metrics_interval: float = 60_000,
        monitor: PerformanceMonitor | None = None,
    ) -> None:
        self._on_metrics = on_metrics
        self._log_events = log_events
        self._max_events = max_events
        self._memory_check_interval = memory_check_interval
        self._metrics_interval = metrics_interval
        self._monitor = monitor or PerformanceMonitor()

        self._events: deque[DebugEvent] = deque(maxlen=max_events)
        self._labels: Counter[str] = Counter()
        self._batch_sizes: deque[int] = deque(maxlen=max_events)
        self.action_count = 0
        self.undo_count = 0
        self.redo_count = 0
        self._measurements: deque[int] = deque(maxlen=max_events)
        self._peak = 0
        self._samples = 0

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _record(self, event_type: str, label: str | None = None, **details: Any) -> None:
        self._events.append(DebugEvent(type=event_type, label=label, timestamp=datetime.now(tz=UTC), details=details))
        if label:
            self._labels[label] += 1
        if self._log_events:
            _log.debug("history_debug_event", type=event_type, label=label, **details)

    def sample_memory(self) -> int | None:
        usage = self._monitor.get_memory_usage()
        if usage is None:
            return None
        self._measurements.append(usage)
        self._samples += 1
        self._peak = max(self._peak, usage)
        if self._log_events and self._samples % 10 == 0:
            _log.debug("history_debug_memory", current=usage, peak=self._peak)
        return usage

    def memory_stats(self) -> MemoryStats | None:
        if not self._measurements:
            return None
        total = sum(self._measurements)
        return MemoryStats(
            total=total,
            average=total / len(self._measurements),
            peak=self._peak,
            samples=self._samples,
        )

    def calculate_metrics(self) -> DebugMetrics:
        most_common = self._labels.most_common(1)
        metrics = DebugMetrics(
            action_count=self.action_count,
            undo_count=self.undo_count,
            redo_count=self.redo_count,
            avg_actions_per_batch=(
                sum(self._batch_sizes) / len(self._batch_sizes) if self._batch_sizes else 0.0
            ),
            most_frequent_action=most_common[0][0] if most_common else None,
            label_counts=dict(self._labels),
            memory=self.memory_stats(),
        )
        if self._on_metrics is not None:
            self._on_metrics(metrics)
        return metrics

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _memory_tick(self) -> None:
        self.sample_memory()
        self._monitor.schedule_gc(_MEMORY_TIMER, self._memory_tick, self._memory_check_interval)

    def _metrics_tick(self) -> None:
        self.calculate_metrics()
        self._monitor.schedule_gc(_METRICS_TIMER, self._metrics_tick, self._metrics_interval)

    def start_timers(self) -> None:
        if self._metrics_interval > 0 and self._on_metrics is not None:
            self._monitor.schedule_gc(_METRICS_TIMER, self._metrics_tick, self._metrics_interval)
        if self._memory_check_interval > 0:
            self.sample_memory()
            self._monitor.schedule_gc(_MEMORY_TIMER, self._memory_tick, self._memory_check_interval)

    def stop_timers(self) -> None:
        self._monitor.cancel_gc(_METRICS_TIMER)
        self._monitor.cancel_gc(_MEMORY_TIMER)

    def close(self) -> None:
        self.stop_timers()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_init(self, stack: HistoryStack[Any]) -> None:
        self.start_timers()
        _log.debug("history_debug_initialized", can_undo=stack.can_undo, can_redo=stack.can_redo)

    def on_action_push(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        self.action_count += 1
        if action.children:
            self._batch_sizes.append(len(action.children))
        self._record(
            "push",
            action.label,
            is_mutation=action.is_mutation,
            path_count=len(action.target_paths),
            size=estimate_size(action),
            history_size=stack.state.past_count,
            batch_size=len(action.children) or None,
        )

    def on_undo(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        self.undo_count += 1
        self._record("undo", action.label, size=estimate_size(action))

    def on_redo(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        self.redo_count += 1
        self._record("redo", action.label, size=estimate_size(action))

    def on_clear(self, stack: HistoryStack[Any]) -> None:
        self._record("clear")
        self._events.clear()
        self._labels.clear()
        self._batch_sizes.clear()
        self.action_count = self.undo_count = self.redo_count = 0

    def on_gc(self, stack: HistoryStack[Any], freed_bytes: int) -> None:
        state = stack.state
        self._record("gc", past_size=state.past_count, future_size=state.future_count, freed_bytes=freed_bytes)
        self.calculate_metrics()

    def on_memory_warning(self, usage: MemoryUsage, stack: HistoryStack[Any]) -> None:
        self._record("memory_warning", estimated_bytes=usage.estimated_bytes, action_count=usage.action_count)
        self.calculate_metrics()

    def on_error(self, error: Exception, event: PluginEventName) -> None:
        self._record("error", str(event), message=str(error))

    def debug_data(self) -> dict[str, Any]:
        return {
            "events": list(self._events),
            "metrics": self.calculate_metrics(),
            "memory": {"measurements": list(self._measurements), "stats": self.memory_stats()},
        }
