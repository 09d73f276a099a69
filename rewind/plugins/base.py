"""Plugin contract and lifecycle events.

Every lifecycle event is its own frozen dataclass carrying a typed payload.
The pipeline dispatches with a ``match`` over the event type, so adding an
event means adding a dataclass, a handler on HistoryPlugin and a case in
``dispatch``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from rewind.history.stack import HistoryStack
    from rewind.models.history import Action, MemoryUsage


class PluginEventName(StrEnum):
    """Lifecycle events a plugin can listen to."""

    INIT = "init"
    ACTION_PUSH = "action_push"
    UNDO = "undo"
    REDO = "redo"
    CLEAR = "clear"
    GC = "gc"
    STATE_CHANGE = "state_change"
    MEMORY_WARNING = "memory_warning"


@dataclass(frozen=True)
class InitEvent:
    name: ClassVar[PluginEventName] = PluginEventName.INIT
    stack: HistoryStack[Any]


@dataclass(frozen=True)
class ActionPushEvent:
    name: ClassVar[PluginEventName] = PluginEventName.ACTION_PUSH
    action: Action[Any]
    stack: HistoryStack[Any]


@dataclass(frozen=True)
class UndoEvent:
    name: ClassVar[PluginEventName] = PluginEventName.UNDO
    action: Action[Any]
    stack: HistoryStack[Any]


@dataclass(frozen=True)
class RedoEvent:
    name: ClassVar[PluginEventName] = PluginEventName.REDO
    action: Action[Any]
    stack: HistoryStack[Any]


@dataclass(frozen=True)
class ClearEvent:
    name: ClassVar[PluginEventName] = PluginEventName.CLEAR
    stack: HistoryStack[Any]


@dataclass(frozen=True)
class GCEvent:
    name: ClassVar[PluginEventName] = PluginEventName.GC
    stack: HistoryStack[Any]
    freed_bytes: int = 0


@dataclass(frozen=True)
class StateChangeEvent:
    name: ClassVar[PluginEventName] = PluginEventName.STATE_CHANGE
    state: Any


@dataclass(frozen=True)
class MemoryWarningEvent:
    name: ClassVar[PluginEventName] = PluginEventName.MEMORY_WARNING
    usage: MemoryUsage
    stack: HistoryStack[Any]


PluginEvent = (
    InitEvent
    | ActionPushEvent
    | UndoEvent
    | RedoEvent
    | ClearEvent
    | GCEvent
    | StateChangeEvent
    | MemoryWarningEvent
)

_HANDLER_NAMES: dict[PluginEventName, str] = {
    PluginEventName.INIT: "on_init",
    PluginEventName.ACTION_PUSH: "on_action_push",
    PluginEventName.UNDO: "on_undo",
    PluginEventName.REDO: "on_redo",
    PluginEventName.CLEAR: "on_clear",
    PluginEventName.GC: "on_gc",
    PluginEventName.STATE_CHANGE: "on_state_change",
    PluginEventName.MEMORY_WARNING: "on_memory_warning",
}


class HistoryPlugin:
    """Base class for history observers.

    Subclasses set ``name`` and override the handlers they care about; a
    plugin listens to an event only if it overrides that event's handler.
    Handlers run synchronously on the stack's thread.  Exceptions they raise
    are caught by the pipeline and passed to ``on_error``; they never reach
    the stack's caller.
    """

    name: str = ""
    priority: int = 0
    dependencies: tuple[str, ...] = ()

    def on_init(self, stack: HistoryStack[Any]) -> None:
        """Called once, after the owning stack is constructed."""

    def on_action_push(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        """Called after an action ran and before it is stored in history."""

    def on_undo(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        """Called before the action's undo() runs."""

    def on_redo(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        """Called before the action's do() runs again."""

    def on_clear(self, stack: HistoryStack[Any]) -> None:
        """Called before past and future are emptied."""

    def on_gc(self, stack: HistoryStack[Any], freed_bytes: int) -> None:
        """Called after a garbage collection pass."""

    def on_state_change(self, state: Any) -> None:
        """Called with every state an operation hands back to the caller."""

    def on_memory_warning(self, usage: MemoryUsage, stack: HistoryStack[Any]) -> None:
        """Called when history exceeded its memory budget and was trimmed."""

    def on_error(self, error: Exception, event: PluginEventName) -> None:
        """Called when one of this plugin's own handlers raised."""

    def debug_data(self) -> dict[str, Any] | None:
        """Optional diagnostics snapshot."""
        return None

    def close(self) -> None:
        """Called once by the owning stack's close(); release timers here."""


def listens(plugin: HistoryPlugin, event: PluginEventName) -> bool:
    """True if *plugin* overrides the handler for *event*."""
    attr = _HANDLER_NAMES[event]
    handler = getattr(plugin, attr, None)
    if handler is None:
        return False
    return getattr(handler, "__func__", None) is not getattr(HistoryPlugin, attr)


def dispatch(plugin: HistoryPlugin, event: PluginEvent) -> None:
    """Invoke the handler matching *event* on *plugin*."""
    match event:
        case InitEvent(stack=stack):
            plugin.on_init(stack)
        case ActionPushEvent(action=action, stack=stack):
            plugin.on_action_push(action, stack)
        case UndoEvent(action=action, stack=stack):
            plugin.on_undo(action, stack)
        case RedoEvent(action=action, stack=stack):
            plugin.on_redo(action, stack)
        case ClearEvent(stack=stack):
            plugin.on_clear(stack)
        case GCEvent(stack=stack, freed_bytes=freed_bytes):
            plugin.on_gc(stack, freed_bytes)
        case StateChangeEvent(state=state):
            plugin.on_state_change(state)
        case MemoryWarningEvent(usage=usage, stack=stack):
            plugin.on_memory_warning(usage, stack)
