"""Plugin pipeline and reference plugins.

Submodules:
    base        -- HistoryPlugin contract, PluginEventName and event dataclasses.
    pipeline    -- dependency validation/sorting, event map, isolated emit.
    persistence -- PersistencePlugin (throttled snapshots into a key-value store).
    tracker     -- ActionTrackerPlugin (de-duplicated operation log).
    debug       -- DebugPlugin (counters, label stats, memory samples).
    storage     -- KeyValueStore protocol, MemoryStore, SQLiteStore.
"""

from rewind.plugins.base import HistoryPlugin, PluginEventName
from rewind.plugins.debug import DebugMetrics, DebugPlugin
from rewind.plugins.persistence import PersistencePlugin
from rewind.plugins.pipeline import (
    DependencyCycleError,
    PluginError,
    PluginPipeline,
    build_event_map,
    emit,
    sort_by_dependency_order,
    validate_dependencies,
)
from rewind.plugins.storage import KeyValueStore, MemoryStore, SQLiteStore, StorageError
from rewind.plugins.tracker import ActionTrackerPlugin, TrackedEvent

__all__ = [
    "ActionTrackerPlugin",
    "DebugMetrics",
    "DebugPlugin",
    "DependencyCycleError",
    "HistoryPlugin",
    "KeyValueStore",
    "MemoryStore",
    "PersistencePlugin",
    "PluginError",
    "PluginEventName",
    "PluginPipeline",
    "SQLiteStore",
    "StorageError",
    "TrackedEvent",
    "build_event_map",
    "emit",
    "sort_by_dependency_order",
    "validate_dependencies",
]
