"""Timing and deferred-callback facility used by history stacks and plugins.

Deferred callbacks run on the caller's asyncio event loop via
``loop.call_later``; nothing here starts a thread.  Without a running loop,
scheduling is a logged no-op so that synchronous callers keep working with
the timer-driven features switched off.
"""

from __future__ import annotations

import asyncio
import time
import tracemalloc
from collections.abc import Callable

import structlog

_log = structlog.get_logger(component="observability.performance")


class PerformanceMonitor:
    """Per-owner timers plus a debounced, named callback scheduler.

    Scheduling under a name that already has a pending callback cancels the
    pending one first.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._handles: dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def start_timer(self) -> float:
        return time.perf_counter() if self.enabled else 0.0

    def end_timer(self, token: float) -> float:
        """Return elapsed milliseconds since *token* (0.0 when disabled)."""
        if not self.enabled:
            return 0.0
        return (time.perf_counter() - token) * 1000.0

    def get_memory_usage(self) -> int | None:
        """Current traced allocation size in bytes, if tracemalloc is on."""
        if not self.enabled or not tracemalloc.is_tracing():
            return None
        current, _peak = tracemalloc.get_traced_memory()
        return current

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_gc(self, name: str, callback: Callable[[], None], delay_ms: float) -> bool:
        """Run *callback* once after *delay_ms*; returns False if not scheduled."""
        if not self.enabled:
            return False
        self.cancel_gc(name)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _log.debug("callback_not_scheduled", name=name, reason="no running event loop")
            return False

        def _fire() -> None:
            self._handles.pop(name, None)
            try:
                callback()
            except Exception as exc:
                _log.error("scheduled_callback_failed", name=name, error=str(exc))

        self._handles[name] = loop.call_later(max(delay_ms, 0) / 1000.0, _fire)
        return True

    def cancel_gc(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def is_pending(self, name: str) -> bool:
        return name in self._handles
