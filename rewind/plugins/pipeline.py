"""Dependency-ordered, priority-sorted plugin dispatch with failure isolation.

validate_dependencies    -- warn about dependencies nobody registered.
sort_by_dependency_order -- DFS topological sort; cycles are fatal.
build_event_map          -- which events have at least one listener.
emit                     -- deliver one event; a failing plugin never blocks
                            its siblings or the stack operation.
PluginPipeline           -- the three construction steps plus emit, bundled.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from rewind.observability.metrics import plugin_errors_total
from rewind.plugins.base import (
    HistoryPlugin,
    PluginEvent,
    PluginEventName,
    dispatch,
    listens,
)

_log = structlog.get_logger(component="plugins.pipeline")


class DependencyCycleError(Exception):
    """Raised when plugin dependencies form a cycle (a configuration bug)."""

    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__(f"Plugin dependency cycle detected: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class PluginError(Exception):
    """Wraps an exception raised by a plugin handler."""

    def __init__(self, plugin: str, event: PluginEventName, cause: Exception) -> None:
        super().__init__(f"Plugin '{plugin}' failed handling '{event}': {cause}")
        self.plugin = plugin
        self.event = event
        self.cause = cause


def validate_dependencies(plugins: Sequence[HistoryPlugin]) -> bool:
    """Return False (after logging) if any declared dependency is missing."""
    names = {plugin.name for plugin in plugins}
    valid = True
    for plugin in plugins:
        for dependency in plugin.dependencies:
            if dependency not in names:
                _log.warning("plugin_dependency_missing", plugin=plugin.name, dependency=dependency)
                valid = False
    return valid


def sort_by_dependency_order(plugins: Sequence[HistoryPlugin]) -> list[HistoryPlugin]:
    """Order *plugins* so every plugin comes after its dependencies.

    Missing dependencies are ignored here (see validate_dependencies).

    Raises:
        DependencyCycleError: the dependency graph contains a cycle.
    """
    by_name = {plugin.name: plugin for plugin in plugins}
    ordered: list[HistoryPlugin] = []
    visited: set[str] = set()
    visiting: list[str] = []

    def visit(plugin: HistoryPlugin) -> None:
        if plugin.name in visited:
            return
        if plugin.name in visiting:
            start = visiting.index(plugin.name)
            raise DependencyCycleError([*visiting[start:], plugin.name])
        visiting.append(plugin.name)
        for dependency in plugin.dependencies:
            dep_plugin = by_name.get(dependency)
            if dep_plugin is not None:
                visit(dep_plugin)
        visiting.pop()
        visited.add(plugin.name)
        ordered.append(plugin)

    for plugin in plugins:
        visit(plugin)
    return ordered


def build_event_map(plugins: Sequence[HistoryPlugin]) -> dict[PluginEventName, bool]:
    """Precompute, per event, whether any plugin listens to it."""
    return {event: any(listens(plugin, event) for plugin in plugins) for event in PluginEventName}


def dispatch_order(plugins: Sequence[HistoryPlugin]) -> list[HistoryPlugin]:
    """Order by descending priority without running a plugin before its dependencies.

    Among plugins whose registered dependencies have all been placed, the
    highest priority goes next; ties keep the incoming order.
    """
    registered = {plugin.name for plugin in plugins}
    pending = list(plugins)
    placed: set[str] = set()
    ordered: list[HistoryPlugin] = []
    while pending:
        ready = [
            plugin
            for plugin in pending
            if all(dep in placed or dep not in registered for dep in plugin.dependencies)
        ]
        if not ready:
            raise DependencyCycleError([plugin.name for plugin in pending])
        chosen = max(ready, key=lambda plugin: plugin.priority)
        ordered.append(chosen)
        placed.add(chosen.name)
        pending.remove(chosen)
    return ordered


def _report_error(plugin: HistoryPlugin, error: PluginError) -> None:
    try:
        plugin.on_error(error, error.event)
    except Exception as exc:
        _log.error("plugin_error_handler_failed", plugin=plugin.name, plugin_event=error.event, error=str(exc))


def emit(
    event: PluginEvent,
    plugins: Sequence[HistoryPlugin],
    event_map: dict[PluginEventName, bool] | None = None,
) -> int:
    """Deliver *event* to every listening plugin; returns the failure count.

    Each handler runs in isolation: an exception is logged, counted and
    routed to that plugin's ``on_error`` as a PluginError, and dispatch
    continues with the next plugin.
    """
    if event_map is not None and not event_map.get(event.name, False):
        return 0

    failures = 0
    for plugin in dispatch_order(plugins):
        if not listens(plugin, event.name):
            continue
        try:
            dispatch(plugin, event)
        except Exception as exc:
            failures += 1
            error = PluginError(plugin.name, event.name, exc)
            _log.error("plugin_handler_failed", plugin=plugin.name, plugin_event=event.name, error=str(exc))
            plugin_errors_total.labels(plugin=plugin.name, event=event.name.value).inc()
            _report_error(plugin, error)
    return failures


class PluginPipeline:
    """Validated, dependency-sorted plugin set owned by one stack.

    Raises DependencyCycleError at construction.
    """

    def __init__(self, plugins: Sequence[HistoryPlugin] = ()) -> None:
        validate_dependencies(plugins)
        self.plugins = sort_by_dependency_order(plugins)
        self.event_map = build_event_map(self.plugins)

    def listens(self, event: PluginEventName) -> bool:
        return self.event_map.get(event, False)

    def emit(self, event: PluginEvent) -> int:
        return emit(event, self.plugins, self.event_map)

    def debug_data(self) -> dict[str, Any]:
        """Collect ``debug_data()`` from every plugin that provides it."""
        collected: dict[str, Any] = {}
        for plugin in self.plugins:
            data = plugin.debug_data()
            if data is not None:
                collected[plugin.name] = data
        return collected

    def close(self) -> None:
        """Call every plugin's close(); a failing one is logged and skipped."""
        for plugin in self.plugins:
            try:
                plugin.close()
            except Exception as exc:
                _log.error("plugin_close_failed", plugin=plugin.name, error=str(exc))
