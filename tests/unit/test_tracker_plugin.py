"""Unit tests for ActionTrackerPlugin."""

from __future__ import annotations

from rewind.models.history import Action
from rewind.plugins.tracker import ActionTrackerPlugin, TrackedEvent


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _action(label: str) -> Action[int]:
    return Action(do_fn=lambda: 1, undo_fn=lambda: 0, label=label, estimated_size=640)


class TestTracking:
    def test_operations_are_reported(self) -> None:
        seen: list[TrackedEvent] = []
        plugin = ActionTrackerPlugin(seen.append, filter_duplicates=False)
        plugin.on_action_push(_action("a"), None)
        plugin.on_undo(_action("a"), None)
        plugin.on_redo(_action("a"), None)
        plugin.on_gc(None, 1024)
        assert [(e.type, e.label) for e in seen] == [
            ("push", "a"),
            ("undo", "a"),
            ("redo", "a"),
            ("gc", "garbage collection"),
        ]
        assert seen[0].details["size"] == 640
        assert seen[3].details["freed_bytes"] == 1024

    def test_history_only_kept_when_requested(self) -> None:
        plugin = ActionTrackerPlugin()
        plugin.on_action_push(_action("a"), None)
        assert plugin.history() == []

    def test_history_is_bounded(self) -> None:
        plugin = ActionTrackerPlugin(keep_history=True, max_history=3, filter_duplicates=False)
        for n in range(5):
            plugin.on_action_push(_action(str(n)), None)
        assert [e.label for e in plugin.history()] == ["2", "3", "4"]


class TestDeduplication:
    def test_identical_event_inside_window_is_dropped(self) -> None:
        clock = _Clock()
        seen: list[TrackedEvent] = []
        plugin = ActionTrackerPlugin(seen.append, clock=clock)
        plugin.on_action_push(_action("type"), None)
        clock.now += 0.2
        plugin.on_action_push(_action("type"), None)
        assert len(seen) == 1

    def test_identical_event_after_window_is_kept(self) -> None:
        clock = _Clock()
        seen: list[TrackedEvent] = []
        plugin = ActionTrackerPlugin(seen.append, clock=clock)
        plugin.on_action_push(_action("type"), None)
        clock.now += 0.6
        plugin.on_action_push(_action("type"), None)
        assert len(seen) == 2

    def test_different_type_is_not_a_duplicate(self) -> None:
        clock = _Clock()
        seen: list[TrackedEvent] = []
        plugin = ActionTrackerPlugin(seen.append, clock=clock)
        plugin.on_action_push(_action("x"), None)
        plugin.on_undo(_action("x"), None)
        assert len(seen) == 2

    def test_clear_resets_history(self) -> None:
        seen: list[TrackedEvent] = []
        plugin = ActionTrackerPlugin(seen.append, keep_history=True)
        plugin.on_action_push(_action("a"), None)
        plugin.on_clear(None)
        assert seen[-1].type == "clear"
        assert seen[-1].label == "all history cleared"
        assert plugin.history() == []
