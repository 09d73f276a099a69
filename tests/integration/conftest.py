"""Shared helpers for rewind integration tests.

Provides a small document "host" that owns state the way an editor would,
plus action builders and a recording plugin, so tests can drive a
HistoryStack through realistic push/undo/redo sequences.
"""

from __future__ import annotations

from typing import Any

import pytest

from rewind.history.stack import HistoryStack, create_history_stack
from rewind.models.history import Action
from rewind.plugins.base import HistoryPlugin, PluginEventName

# ---------------------------------------------------------------------------
# Action factory helpers
# ---------------------------------------------------------------------------


class Counter:
    """Mutable host state driven by set/increment actions."""

    def __init__(self, value: int = 0) -> None:
        self.value = value

    def set(self, value: int) -> int:
        self.value = value
        return value


def make_set_action(counter: Counter, new: int, label: str | None = None) -> Action[int]:
    """Action that sets the counter to *new* and restores the value seen at creation."""
    old = counter.value
    return Action(do_fn=lambda: counter.set(new), undo_fn=lambda: counter.set(old), label=label)


def make_failing_action(label: str = "broken", *, fail_do: bool = True, fail_undo: bool = False) -> Action[int]:
    def _do() -> int:
        if fail_do:
            raise RuntimeError("do failed")
        return 1

    def _undo() -> int:
        if fail_undo:
            raise RuntimeError("undo failed")
        return 0

    return Action(do_fn=_do, undo_fn=_undo, label=label)


# ---------------------------------------------------------------------------
# Plugin helpers
# ---------------------------------------------------------------------------


class RecordingPlugin(HistoryPlugin):
    """Appends "<name>:<event>" to a shared log for every lifecycle event."""

    def __init__(
        self,
        name: str,
        log: list[str],
        *,
        priority: int = 0,
        dependencies: tuple[str, ...] = (),
    ) -> None:
        self.name = name
        self.priority = priority
        self.dependencies = dependencies
        self.log = log
        self.states: list[Any] = []
        self.errors: list[PluginEventName] = []

    def on_init(self, stack: Any) -> None:
        self.log.append(f"{self.name}:init")

    def on_action_push(self, action: Action[Any], stack: Any) -> None:
        self.log.append(f"{self.name}:push")

    def on_undo(self, action: Action[Any], stack: Any) -> None:
        self.log.append(f"{self.name}:undo")

    def on_redo(self, action: Action[Any], stack: Any) -> None:
        self.log.append(f"{self.name}:redo")

    def on_clear(self, stack: Any) -> None:
        self.log.append(f"{self.name}:clear")

    def on_gc(self, stack: Any, freed_bytes: int) -> None:
        self.log.append(f"{self.name}:gc")

    def on_state_change(self, state: Any) -> None:
        self.states.append(state)

    def on_memory_warning(self, usage: Any, stack: Any) -> None:
        self.log.append(f"{self.name}:memory_warning")

    def on_error(self, error: Exception, event: PluginEventName) -> None:
        self.errors.append(event)


class ExplodingPlugin(RecordingPlugin):
    """Raises from every handler it overrides."""

    def on_init(self, stack: Any) -> None:
        raise RuntimeError("init exploded")

    def on_action_push(self, action: Action[Any], stack: Any) -> None:
        raise RuntimeError("push exploded")

    def on_undo(self, action: Action[Any], stack: Any) -> None:
        raise RuntimeError("undo exploded")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def counter() -> Counter:
    return Counter()


@pytest.fixture
def stack() -> HistoryStack[Any]:
    """A plain stack: no compression, no count cap, no timers."""
    return create_history_stack()


@pytest.fixture
def compressing_stack() -> HistoryStack[Any]:
    return create_history_stack(compress=True)
