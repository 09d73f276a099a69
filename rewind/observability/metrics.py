"""Prometheus metrics for history stacks.

Counters are process-wide and only observe; no stack reads them back.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

operations_total = Counter(
    "rewind_operations_total",
    "History stack operations by kind.",
    ["operation"],
)

operation_duration_seconds = Histogram(
    "rewind_operation_duration_seconds",
    "Wall time spent inside a history stack operation.",
    ["operation"],
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)

gc_runs_total = Counter(
    "rewind_gc_runs_total",
    "Garbage collection passes over history stacks.",
)

gc_freed_bytes_total = Counter(
    "rewind_gc_freed_bytes_total",
    "Estimated bytes released by garbage collection.",
)

evicted_actions_total = Counter(
    "rewind_evicted_actions_total",
    "History entries dropped to respect count or memory budgets.",
    ["reason"],
)

plugin_errors_total = Counter(
    "rewind_plugin_errors_total",
    "Exceptions raised by plugin handlers.",
    ["plugin", "event"],
)
