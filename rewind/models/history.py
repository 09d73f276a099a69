"""Core history data structures and enumerations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class OperationType(StrEnum):
    """Kind of stack operation recorded in an OperationRecord."""

    PUSH = "push"
    UNDO = "undo"
    REDO = "redo"
    CLEAR = "clear"


class ExecutionPhase(StrEnum):
    """Reentrancy guard of a HistoryStack.

    BUSY while an action's do()/undo() is running on the caller's thread.
    This is not a lock: it only turns undo/redo calls issued from inside a
    running action into no-ops.
    """

    IDLE = "idle"
    BUSY = "busy"


@dataclass
class ActionMetadata:
    """Bookkeeping attached by the memory manager and batch composition."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    compressed: bool = False
    hash: str | None = None


@dataclass
class Action(Generic[T]):
    """A reversible state transition.

    ``do_fn``/``undo_fn`` are zero-argument closures; anything they need was
    captured (and deep-cloned) when the action was built.  ``args`` is the
    accounting copy of those captures: the memory manager may replace it
    with lightweight stubs without changing what do()/undo() return.
    """

    do_fn: Callable[[], T] = field(repr=False)
    undo_fn: Callable[[], T] = field(repr=False)
    label: str | None = None
    args: list[Any] = field(default_factory=list, repr=False)
    is_mutation: bool = False
    target_paths: list[str] = field(default_factory=list)
    estimated_size: int | None = None
    metadata: ActionMetadata | None = None
    children: tuple[Action[T], ...] = field(default_factory=tuple, repr=False)

    def do(self) -> T:
        return self.do_fn()

    def undo(self) -> T:
        return self.undo_fn()

    @property
    def is_diff(self) -> bool:
        """True for mutation actions that carry changed-path information."""
        return self.is_mutation and bool(self.target_paths)


@dataclass(frozen=True)
class OperationRecord:
    """Outcome of the most recent stack operation."""

    type: OperationType
    timestamp: datetime
    duration: float | None = None  # milliseconds
    memory_usage: int | None = None
    label: str | None = None
    action_size: int | None = None


@dataclass(frozen=True)
class LargestAction:
    size: int
    label: str | None = None


@dataclass(frozen=True)
class MemoryUsage:
    """Estimated footprint of a stack's past and future lists."""

    past_size: int
    future_size: int
    estimated_bytes: int
    action_count: int
    average_action_size: float
    largest_action: LargestAction | None = None
    last_operation: OperationRecord | None = None


@dataclass(frozen=True)
class HistoryState:
    """Read-only view of a stack's counters and flags."""

    past_count: int
    future_count: int
    can_undo: bool
    can_redo: bool
    last_operation: OperationRecord | None = None


@dataclass(frozen=True)
class HistoryEntry:
    """One row of the ``history`` snapshot exposed by a stack."""

    index: int
    label: str
