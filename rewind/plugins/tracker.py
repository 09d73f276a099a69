"""Action tracker plugin -- records stack operations for analytics or audit."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from rewind.plugins.base import HistoryPlugin

if TYPE_CHECKING:
    from rewind.history.stack import HistoryStack
    from rewind.models.history import Action

_log = structlog.get_logger(component="plugins.tracker")

_DUPLICATE_WINDOW_S = 0.5


@dataclass(frozen=True)
class TrackedEvent:
    type: str
    label: str | None
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)


class ActionTrackerPlugin(HistoryPlugin):
    """Reports push/undo/redo/clear/gc to ``on_track`` and optionally keeps them.

    With ``filter_duplicates`` an event identical in (type, label) to the
    previous one and less than 500 ms after it is dropped.
    """

    name = "ActionTracker"
    priority = 5

    def __init__(
        self,
        on_track: Callable[[TrackedEvent], None] | None = None,
        *,
        keep_history: bool = False,
        max_history: int = 100,
        filter_duplicates: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_track = on_track
        self._keep_history = keep_history
        self._filter_duplicates = filter_duplicates
        self._clock = clock
        self._history: deque[TrackedEvent] = deque(maxlen=max_history)
        # (type, label) of the last accepted event and when it was seen
        self._last_key: tuple[str, str | None] | None = None
        self._last_seen = float("-inf")

    def _track(self, event_type: str, label: str | None, **details: Any) -> None:
        now = self._clock()
        key = (event_type, label)
        if self._filter_duplicates and key == self._last_key and now - self._last_seen < _DUPLICATE_WINDOW_S:
            _log.debug("tracked_event_suppressed", type=event_type, label=label)
            return
        self._last_key = key
        self._last_seen = now

        event = TrackedEvent(type=event_type, label=label, timestamp=datetime.now(tz=UTC), details=details)
        if self._on_track is not None:
            self._on_track(event)
        if self._keep_history:
            self._history.append(event)

    def history(self) -> list[TrackedEvent]:
        return list(self._history)

    def on_action_push(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        self._track(
            "push",
            action.label,
            size=action.estimated_size,
            mutation=action.is_mutation,
            paths=len(action.target_paths),
        )

    def on_undo(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        self._track("undo", action.label, size=action.estimated_size)

    def on_redo(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        self._track("redo", action.label, size=action.estimated_size)

    def on_clear(self, stack: HistoryStack[Any]) -> None:
        self._track("clear", "all history cleared")
        self._history.clear()
        self._last_key = None
        self._last_seen = float("-inf")

    def on_gc(self, stack: HistoryStack[Any], freed_bytes: int) -> None:
        self._track("gc", "garbage collection", freed_bytes=freed_bytes)

    def debug_data(self) -> dict[str, Any]:
        return {
            "events": self.history(),
            "metrics": {
                "total_events": len(self._history),
                "last_event": self._last_key,
            },
        }
