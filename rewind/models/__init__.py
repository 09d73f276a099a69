"""Core data structures for rewind."""

from rewind.models.config import (
    HistoryConfig,
    HistoryOptions,
    LogConfig,
    PersistenceConfig,
    RewindConfig,
)
from rewind.models.history import (
    Action,
    ActionMetadata,
    ExecutionPhase,
    HistoryEntry,
    HistoryState,
    LargestAction,
    MemoryUsage,
    OperationRecord,
    OperationType,
)

__all__ = [
    "Action",
    "ActionMetadata",
    "ExecutionPhase",
    "HistoryConfig",
    "HistoryEntry",
    "HistoryOptions",
    "HistoryState",
    "LargestAction",
    "LogConfig",
    "MemoryUsage",
    "OperationRecord",
    "OperationType",
    "PersistenceConfig",
    "RewindConfig",
]
