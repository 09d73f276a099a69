"""Memory manager for history stacks.

Submodules:
    manager -- size estimation, memory/count trimming, storage optimization,
               garbage collection and the selective clone cache.
"""

from rewind.memory.manager import (
    GCResult,
    SelectiveCloneCache,
    adjusted_gc_interval,
    estimate_size,
    estimate_total,
    garbage_collect,
    optimize_action,
    optimize_for_storage,
    trim_by_count,
    trim_by_memory,
)

__all__ = [
    "GCResult",
    "SelectiveCloneCache",
    "adjusted_gc_interval",
    "estimate_size",
    "estimate_total",
    "garbage_collect",
    "optimize_action",
    "optimize_for_storage",
    "trim_by_count",
    "trim_by_memory",
]
