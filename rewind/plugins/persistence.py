"""History persistence plugin.

Snapshots the current state into a key-value store whenever an action is
pushed or the state changes, at most once per ``throttle_ms``.  A save that
lands inside the throttle window is kept as pending and written later,
either by a callback on the running event loop or by ``flush()``.

Storage failures are logged and swallowed here; they never reach the stack.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from rewind.diff.clone import compute_hash, deep_clone, selective_deep_clone
from rewind.observability.performance import PerformanceMonitor
from rewind.plugins.base import HistoryPlugin, PluginEventName
from rewind.plugins.storage import KeyValueStore, StorageError

if TYPE_CHECKING:
    from rewind.history.stack import HistoryStack
    from rewind.models.history import Action, MemoryUsage

_log = structlog.get_logger(component="plugins.persistence")

_MISSING = object()


class PersistencePlugin(HistoryPlugin):
    """Persists the latest state under ``key`` and restores it on init.

    Args:
        key:                 Storage key; the memory-warning backup goes to
                             ``<key>_backup``.
        store:               Key-value backend.
        throttle_ms:         Minimum spacing between two writes.
        selective_paths:     Persist only these dot-separated paths.
        immutable:           Store the caller's state object without cloning.
        on_load:             Called with the restored state during on_init.
        backup_threshold_mb: Memory-warning usage above which a backup is written.
        monitor:             Scheduler for the trailing save; a private one is
                             used when omitted.
        clock:               Monotonic seconds source (tests inject a fake).
    """

    name = "HistoryPersistence"
    priority = 10

    def __init__(
        self,
        key: str,
        store: KeyValueStore,
        *,
        throttle_ms: float = 1000,
        selective_paths: list[str] | None = None,
        immutable: bool = False,
        on_load: Callable[[Any], None] | None = None,
        backup_threshold_mb: float = 50,
        serializer: Callable[[Any], str] = json.dumps,
        deserializer: Callable[[str], Any] = json.loads,
        monitor: PerformanceMonitor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not key:
            raise ValueError("Persistence key must not be empty")
        self.key = key
        self.backup_key = f"{key}_backup"
        self._store = store
        self._throttle_s = throttle_ms / 1000.0
        self._selective_paths = selective_paths
        self._immutable = immutable
        self._on_load = on_load
        self._backup_threshold = int(backup_threshold_mb * 1024 * 1024)
        self._serialize = serializer
        self._deserialize = deserializer
        self._monitor = monitor or PerformanceMonitor()
        self._clock = clock

        self._last_saved: Any = None
        self._last_hash: str | None = None
        self._last_save_time = float("-inf")
        self._pending: Any = _MISSING
        self.restored_state: Any = None
        self.saves = 0

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    @property
    def _timer_name(self) -> str:
        return f"persistence:{self.key}"

    def load(self) -> Any:
        """Return the persisted state, or None if absent or unreadable."""
        try:
            raw = self._store.get(self.key)
            if not raw:
                return None
            payload = self._deserialize(raw)
        except (StorageError, ValueError, TypeError) as exc:
            _log.error("persisted_history_load_failed", key=self.key, error=str(exc))
            return None
        if not isinstance(payload, dict) or payload.get("state") is None:
            return None
        return payload["state"]

    def _snapshot(self, state: Any) -> Any:
        if self._immutable:
            return state
        if self._selective_paths and isinstance(state, dict):
            return selective_deep_clone(state, self._selective_paths)
        return deep_clone(state)

    def _save(self, state: Any) -> None:
        current_hash = compute_hash(state)
        if current_hash == self._last_hash:
            return
        self._last_hash = current_hash
        self._last_save_time = self._clock()
        self._last_saved = self._snapshot(state)
        try:
            self._store.set(
                self.key,
                self._serialize({"state": self._last_saved, "timestamp": datetime.now(tz=UTC).isoformat()}),
            )
            self.saves += 1
        except (StorageError, TypeError, ValueError) as exc:
            _log.error("persisted_history_save_failed", key=self.key, error=str(exc))

    def _throttled_save(self, state: Any) -> None:
        if self._clock() - self._last_save_time < self._throttle_s:
            self._pending = state
            self._monitor.schedule_gc(self._timer_name, self.flush, self._throttle_s * 1000.0)
            return
        self._pending = _MISSING
        self._save(state)

    def flush(self) -> None:
        """Write the pending (throttled) state now, if there is one."""
        self._monitor.cancel_gc(self._timer_name)
        if self._pending is _MISSING:
            return
        state, self._pending = self._pending, _MISSING
        self._save(state)

    @property
    def has_pending(self) -> bool:
        return self._pending is not _MISSING

    def close(self) -> None:
        """Write any pending save and drop the trailing-save timer."""
        self.flush()

    def _remove(self, key: str) -> None:
        try:
            self._store.remove(key)
        except StorageError as exc:
            _log.error("persisted_history_remove_failed", key=key, error=str(exc))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_init(self, stack: HistoryStack[Any]) -> None:
        restored = self.load()
        if restored is None:
            return
        self.restored_state = restored
        _log.info("persisted_history_restored", key=self.key)
        if self._on_load is not None:
            self._on_load(restored)

    def on_action_push(self, action: Action[Any], stack: HistoryStack[Any]) -> None:
        state = stack.current_state()
        if state is not None:
            self._throttled_save(state)

    def on_state_change(self, state: Any) -> None:
        if state is None:
            self._last_saved = None
            return
        self._throttled_save(state)

    def on_clear(self, stack: HistoryStack[Any]) -> None:
        self._monitor.cancel_gc(self._timer_name)
        self._pending = _MISSING
        self._remove(self.key)
        self._last_saved = None
        self._last_hash = None

    def on_memory_warning(self, usage: MemoryUsage, stack: HistoryStack[Any]) -> None:
        if self._last_saved is None or usage.estimated_bytes <= self._backup_threshold:
            return
        minimal = {
            "state": self._last_saved,
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "warning": True,
        }
        try:
            self._store.set(self.backup_key, self._serialize(minimal))
            _log.warning("persisted_history_backup_written", key=self.backup_key, bytes=usage.estimated_bytes)
        except (StorageError, TypeError, ValueError) as exc:
            _log.warning("persisted_history_backup_failed", key=self.backup_key, error=str(exc))

    def on_error(self, error: Exception, event: PluginEventName) -> None:
        _log.warning("persistence_plugin_error", plugin_event=event, error=str(error))
        if event in (PluginEventName.ACTION_PUSH, PluginEventName.STATE_CHANGE):
            self._remove(self.key)

    def debug_data(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "saves": self.saves,
            "pending": self.has_pending,
            "last_hash": self._last_hash,
        }
